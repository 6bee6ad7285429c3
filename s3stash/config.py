# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so the engines can
share one snapshot without anyone modifying it mid-run.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Dict, List
import re

from s3stash.exceptions import ConfigurationError

MIB = 1024 * 1024

# S3 refuses multipart parts smaller than 5 MiB (except the last one)
MIN_MULTIPART_CHUNK = 5 * MIB


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _is_absolute(path: str) -> bool:
    return PurePosixPath(path).is_absolute() or PureWindowsPath(path).is_absolute()


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Retention policy for stored archives.

    An archive becomes eligible for deletion once it is strictly older than
    max_age_days, unless it is one of the keep_latest newest archives of its
    (service, path) group.
    """

    max_age_days: int
    keep_latest: int = 0

    def __post_init__(self) -> None:
        from s3stash.errors import explain_invalid_retention

        if self.max_age_days <= 0:
            raise ConfigurationError(
                explain_invalid_retention(self.max_age_days),
                details={"max_age_days": self.max_age_days},
            )
        if self.keep_latest < 0:
            raise ConfigurationError(
                f"keep_latest must be >= 0, got {self.keep_latest}",
                details={"keep_latest": self.keep_latest},
            )


@dataclass(frozen=True)
class ServiceSpec:
    """A named service and the directories that make it up."""

    name: str

    # Path name -> absolute root directory
    paths: Dict[str, str] = field(default_factory=dict)

    # Path name -> folder prefixes to include (everything when absent)
    include_folders: Dict[str, List[str]] = field(default_factory=dict)

    def validate(self) -> List[str]:
        """Return a list of problems with this service, empty when valid."""
        errors: List[str] = []

        if not self.name or "/" in self.name:
            errors.append(f"Invalid service name: {self.name!r}")

        if not self.paths:
            errors.append(f"service {self.name} must have at least one path configured")

        for path_name, location in self.paths.items():
            if not path_name or path_name.strip("/") != path_name or "//" in path_name:
                errors.append(f"service {self.name} has invalid path name {path_name!r}")
            if not _is_absolute(location):
                errors.append(
                    f"service {self.name} path {path_name} must be an absolute path"
                )

        for path_name in self.include_folders:
            if path_name not in self.paths:
                errors.append(
                    f"service {self.name} include_folders refers to unknown path {path_name}"
                )

        return errors


@dataclass(frozen=True)
class S3Settings:
    """Connection and transfer settings for the object store."""

    # Required: bucket holding the archives
    bucket: str

    # Key prefix under which every archive is stored
    prefix: str = "stash"

    region: str = "us-east-1"

    # Custom endpoint for S3-compatible stores (MinIO, R2, ...)
    endpoint_url: str | None = None

    # Deadline for the bucket probe performed at connect time
    connect_timeout: float = 10.0

    # Deadline applied to every individual store call
    operation_timeout: float = 300.0

    # Files larger than this are uploaded with multipart upload
    multipart_threshold: int = 64 * MIB

    multipart_chunk_size: int = 16 * MIB

    # Batch size for S3 listing
    list_page_size: int = 1000

    def validate(self) -> List[str]:
        errors: List[str] = []

        if not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")

        if self.prefix.startswith("/") or self.prefix.endswith("/"):
            errors.append(f"prefix must not start or end with '/', got {self.prefix!r}")

        if self.connect_timeout <= 0 or self.operation_timeout <= 0:
            errors.append("timeouts must be > 0")

        if self.multipart_chunk_size < MIN_MULTIPART_CHUNK:
            errors.append(
                f"multipart_chunk_size must be >= {MIN_MULTIPART_CHUNK}, "
                f"got {self.multipart_chunk_size}"
            )

        if self.multipart_threshold < 1:
            errors.append(f"multipart_threshold must be >= 1, got {self.multipart_threshold}")

        if not 1 <= self.list_page_size <= 1000:
            errors.append(f"list_page_size must be 1-1000, got {self.list_page_size}")

        return errors


@dataclass(frozen=True)
class BackupSettings:
    """How archives are produced."""

    # Scratch directory for archives in flight (system temp when unset)
    temp_dir: Path | None = None

    # gzip the tar stream
    compression: bool = True

    # Store platform permission descriptors alongside each entry
    preserve_acls: bool = False

    # Archives smaller than this many bytes are rejected (0 disables)
    min_size: int = 0

    def validate(self) -> List[str]:
        errors: List[str] = []
        if self.min_size < 0:
            errors.append("backup.min_size cannot be negative")
        return errors


@dataclass(frozen=True)
class StashConfig:
    """
    Immutable configuration snapshot consumed by the engines.

    The configuration is validated on creation; every problem found is
    reported at once in a single ConfigurationError.
    """

    s3: S3Settings

    services: Dict[str, ServiceSpec] = field(default_factory=dict)

    # Default maximum archive age in days used by cleanup
    retention_days: int = 30

    backup: BackupSettings = field(default_factory=BackupSettings)

    # Run a single-service cleanup after each successful backup
    auto_cleanup: bool = False

    # Number of paths processed at the same time (1 = sequential)
    max_concurrent_ops: int = 1

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        errors.extend(self.s3.validate())
        errors.extend(self.backup.validate())

        if not self.services:
            errors.append("at least one service must be configured")

        for name, service in self.services.items():
            if name != service.name:
                errors.append(f"service key {name!r} does not match service name {service.name!r}")
            errors.extend(service.validate())

        if self.retention_days <= 0:
            errors.append("retention must be greater than 0")

        if self.max_concurrent_ops < 1:
            errors.append(f"max_concurrent_ops must be >= 1, got {self.max_concurrent_ops}")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "StashConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        return replace(self, **kwargs)

    def service(self, name: str) -> ServiceSpec:
        """Look up a service, raising ConfigurationError when unknown."""
        from s3stash.errors import explain_unknown_service

        try:
            return self.services[name]
        except KeyError:
            raise ConfigurationError(
                explain_unknown_service(name, self.services),
                details={"service": name},
            ) from None

    def retention_policy(self, keep_latest: int = 0, max_age_days: int | None = None) -> RetentionPolicy:
        """Build the retention policy for a cleanup run."""
        return RetentionPolicy(
            max_age_days=max_age_days if max_age_days is not None else self.retention_days,
            keep_latest=keep_latest,
        )


# Type alias for the services mapping accepted by the builder
ServiceMap = Dict[str, Dict[str, str]]
