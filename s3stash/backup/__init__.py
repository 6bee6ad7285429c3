# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup, restore and cleanup engines.
"""

from s3stash.backup.manager import (
    BackupEngine,
    BackupResult,
    BackupRunResult,
)

from s3stash.backup.restore import (
    RestoreEngine,
    RestoreOptions,
    RestoreResult,
    RestoreRunResult,
)

from s3stash.backup.cleanup import (
    CleanupEngine,
    CleanupOptions,
    CleanupResult,
)

from s3stash.backup.listing import list_backups

__all__ = [
    "BackupEngine",
    "BackupResult",
    "BackupRunResult",
    "RestoreEngine",
    "RestoreOptions",
    "RestoreResult",
    "RestoreRunResult",
    "CleanupEngine",
    "CleanupOptions",
    "CleanupResult",
    "list_backups",
]
