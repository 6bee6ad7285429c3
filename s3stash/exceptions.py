# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Exceptions - Custom exceptions for the s3stash package.
"""


class StashError(Exception):
    """Base exception for all s3stash errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(StashError):
    """Raised when configuration is invalid or names something unknown."""

    pass


class ConnectivityError(StashError):
    """Raised when the object store cannot be reached or accessed."""

    pass


class StorageError(StashError):
    """Raised when an object store operation fails."""

    pass


class ArchiveError(StashError):
    """Raised when an archive cannot be created or extracted."""

    pass


class BackupError(StashError):
    """Raised when backing up a single path fails."""

    pass


class RestoreError(StashError):
    """Raised when restore operations fail."""

    pass


class SelectionError(StashError):
    """Raised when a restore filter cannot be interpreted."""

    pass
