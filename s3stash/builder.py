# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Builder - Functional builder pattern for configuration.

This module provides pure functions for building StashConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict, List

from s3stash.config import BackupSettings, S3Settings, ServiceMap, ServiceSpec, StashConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]

_S3_FIELDS = ("bucket", "prefix", "region", "endpoint_url")
_BACKUP_FIELDS = ("temp_dir", "compression", "preserve_acls", "min_size")


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "bucket": "",
        "prefix": "stash",
        "region": "us-east-1",
        "endpoint_url": None,
        "services": {},
        "include_folders": {},
        "retention_days": 30,
        "auto_cleanup": False,
        "temp_dir": None,
        "compression": True,
        "preserve_acls": False,
        "min_size": 0,
        "max_concurrent_ops": 1,
    }


def with_bucket(config: ConfigDict, bucket_name: str) -> ConfigDict:
    """
    Set the S3 bucket name.

    Args:
        config: Current configuration dictionary
        bucket_name: Name of the bucket holding the archives

    Returns:
        New configuration dictionary with bucket set
    """
    return {**config, "bucket": bucket_name}


def with_prefix(config: ConfigDict, prefix: str) -> ConfigDict:
    """
    Set the key prefix under which archives are stored.

    Surrounding slashes are removed; an empty prefix stores archives at the
    bucket root.
    """
    return {**config, "prefix": prefix.strip("/")}


def with_region(config: ConfigDict, region: str) -> ConfigDict:
    return {**config, "region": region}


def with_endpoint(config: ConfigDict, endpoint_url: str) -> ConfigDict:
    """
    Use an S3-compatible endpoint (MinIO, R2, Spaces, ...).

    Args:
        config: Current configuration dictionary
        endpoint_url: Endpoint URL, e.g. 'http://localhost:9000'

    Returns:
        New configuration dictionary with endpoint set
    """
    return {**config, "endpoint_url": endpoint_url}


def add_service(config: ConfigDict, service: str, paths: Dict[str, str]) -> ConfigDict:
    """
    Add a service and the directories that make it up.

    Args:
        config: Current configuration dictionary
        service: Service name
        paths: Path name to absolute directory, e.g. {"data": "/srv/app/data"}

    Returns:
        New configuration dictionary with the service added
    """
    existing = config["services"].get(service, {})
    new_services = {**config["services"], service: {**existing, **paths}}
    return {**config, "services": new_services}


def include_folders(config: ConfigDict, service: str, path: str, folders: List[str]) -> ConfigDict:
    """
    Restrict a path's archive to the given folder prefixes.

    Args:
        config: Current configuration dictionary
        service: Service name
        path: Path name within the service
        folders: Relative folder prefixes, e.g. ['data', 'config/app']

    Returns:
        New configuration dictionary with the include filter set
    """
    service_filters = {**config["include_folders"].get(service, {}), path: list(folders)}
    return {
        **config,
        "include_folders": {**config["include_folders"], service: service_filters},
    }


def retain_for_days(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set how many days archives are kept by cleanup.

    Args:
        config: Current configuration dictionary
        days: Maximum archive age in days

    Returns:
        New configuration dictionary with retention set
    """
    if days <= 0:
        raise ValueError(f"retention days must be > 0, got {days}")
    return {**config, "retention_days": days}


def enable_auto_cleanup(config: ConfigDict) -> ConfigDict:
    """
    Clean up a service's old archives after each successful backup.

    The newest archive of every path is always kept.
    """
    return {**config, "auto_cleanup": True}


def without_compression(config: ConfigDict) -> ConfigDict:
    """Store plain .tar archives instead of .tar.gz."""
    return {**config, "compression": False}


def preserve_acls(config: ConfigDict) -> ConfigDict:
    """Record platform permission descriptors in archives and restore them."""
    return {**config, "preserve_acls": True}


def with_min_size(config: ConfigDict, min_size: int) -> ConfigDict:
    """
    Reject archives smaller than min_size bytes.

    Guards against uploading an empty archive when a source directory was
    unexpectedly emptied or unmounted.
    """
    if min_size < 0:
        raise ValueError(f"min_size must be >= 0, got {min_size}")
    return {**config, "min_size": min_size}


def with_temp_dir(config: ConfigDict, temp_dir: Path | str) -> ConfigDict:
    path = Path(temp_dir) if isinstance(temp_dir, str) else temp_dir
    return {**config, "temp_dir": path}


def with_max_concurrent_ops(config: ConfigDict, max_ops: int) -> ConfigDict:
    """
    Set how many paths are processed at the same time.

    Args:
        config: Current configuration dictionary
        max_ops: Maximum concurrent operations (1 = sequential)

    Returns:
        New configuration dictionary with max_concurrent_ops set
    """
    if max_ops < 1:
        raise ValueError(f"max_concurrent_ops must be >= 1, got {max_ops}")
    return {**config, "max_concurrent_ops": max_ops}


def build_config(config_dict: ConfigDict) -> StashConfig:
    """
    Validate and build an immutable StashConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable StashConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    from s3stash.exceptions import ConfigurationError

    if not config_dict.get("bucket"):
        raise ConfigurationError("bucket is required")

    filters = config_dict["include_folders"]
    unknown = sorted(set(filters) - set(config_dict["services"]))
    if unknown:
        raise ConfigurationError(
            "include_folders refers to unknown services",
            details={"services": unknown},
        )

    services = {
        name: ServiceSpec(name=name, paths=dict(paths), include_folders=dict(filters.get(name, {})))
        for name, paths in config_dict["services"].items()
    }

    return StashConfig(
        s3=S3Settings(**{key: config_dict[key] for key in _S3_FIELDS}),
        services=services,
        retention_days=config_dict["retention_days"],
        backup=BackupSettings(**{key: config_dict[key] for key in _BACKUP_FIELDS}),
        auto_cleanup=config_dict["auto_cleanup"],
        max_concurrent_ops=config_dict["max_concurrent_ops"],
    )


def build_from_steps(*steps: BuilderFunc) -> StashConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: with_bucket(c, "my-backups"),
            lambda c: add_service(c, "app", {"data": "/srv/app/data"}),
            enable_auto_cleanup,
        )
    """
    config = create_empty_config()
    for step in steps:
        config = step(config)
    return build_config(config)


def create_config(
    bucket: str,
    *,
    services: ServiceMap | None = None,
    prefix: str = "stash",
    region: str = "us-east-1",
    endpoint_url: str | None = None,
    retention_days: int = 30,
    include: Dict[str, Dict[str, List[str]]] | None = None,
    auto_cleanup: bool = False,
    compression: bool = True,
    acls: bool = False,
    min_size: int = 0,
    temp_dir: str | Path | None = None,
    **kwargs: Any,
) -> StashConfig:
    """
    Create s3stash configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        bucket: S3 bucket name (required)
        services: Service name to {path name: absolute directory}.
                Example: {"app": {"data": "/srv/app/data", "config": "/etc/app"}}
        prefix: Key prefix for every archive (default: "stash")
        region: AWS region (default: "us-east-1")
        endpoint_url: Endpoint for S3-compatible stores (optional)
        retention_days: Maximum archive age kept by cleanup (default: 30)
        include: Service to {path name: folder prefixes} include filters
        auto_cleanup: Clean up after each successful backup (default: False)
        compression: gzip archives (default: True)
        acls: Preserve platform permission descriptors (default: False)
        min_size: Minimum archive size in bytes, 0 disables (default: 0)
        temp_dir: Scratch directory for archives in flight (optional)
        **kwargs: Additional configuration options

    Returns:
        Validated, immutable StashConfig instance

    Example:
        config = create_config(
            bucket="my-backups",
            services={"app": {"data": "/srv/app/data"}},
            include={"app": {"data": ["uploads", "db"]}},
            retention_days=14,
            auto_cleanup=True,
        )
    """
    config_dict = with_bucket(create_empty_config(), bucket)
    config_dict = with_prefix(config_dict, prefix)

    if region:
        config_dict = with_region(config_dict, region)

    if endpoint_url:
        config_dict = with_endpoint(config_dict, endpoint_url)

    for service, paths in (services or {}).items():
        config_dict = add_service(config_dict, service, paths)

    for service, filters in (include or {}).items():
        for path, folders in filters.items():
            config_dict = include_folders(config_dict, service, path, folders)

    config_dict = retain_for_days(config_dict, retention_days)

    if auto_cleanup:
        config_dict = enable_auto_cleanup(config_dict)
    if not compression:
        config_dict = without_compression(config_dict)
    if acls:
        config_dict = preserve_acls(config_dict)
    if min_size:
        config_dict = with_min_size(config_dict, min_size)
    if temp_dir:
        config_dict = with_temp_dir(config_dict, temp_dir)

    # Apply any additional kwargs
    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
