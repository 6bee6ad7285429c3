# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash - Directory-tree backups to S3.

Archives configured service directories as tar streams, stores them under
timestamped keys, restores them by date, and expires old archives with a
retention policy. Package name: s3stash.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from s3stash.builder import create_config
from s3stash.config import RetentionPolicy, StashConfig

# Environment-based configuration
from s3stash.env import create_config_from_env

# Object store
from s3stash.storage import ObjectStore

# Engines
from s3stash.backup import (
    BackupEngine,
    CleanupEngine,
    CleanupOptions,
    RestoreEngine,
    RestoreOptions,
    list_backups,
)

from s3stash.notifications import LoggingNotificationSink, NotificationKind

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_config",
    "create_config_from_env",
    "StashConfig",
    "RetentionPolicy",
    # Storage
    "ObjectStore",
    # Engines
    "BackupEngine",
    "RestoreEngine",
    "RestoreOptions",
    "CleanupEngine",
    "CleanupOptions",
    "list_backups",
    # Notifications
    "LoggingNotificationSink",
    "NotificationKind",
]
