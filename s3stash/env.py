# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

A thin wrapper around create_config() that reads connection and behaviour
settings from well-known environment variables. Which directories to back
up is never read from the environment; services are always explicit.
"""

from __future__ import annotations

import os

from s3stash.builder import create_config
from s3stash.config import ServiceMap, StashConfig
from s3stash.errors import (
    explain_invalid_bool_env,
    explain_invalid_int_env,
    explain_invalid_retention,
    explain_missing_bucket_env,
    explain_missing_services_argument,
)
from s3stash.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value)) from exc
    if number < 0:
        raise ConfigurationError(explain_invalid_int_env(name, value))
    return number


def _parse_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def create_config_from_env(*, services: ServiceMap) -> StashConfig:
    """
    Create a StashConfig from environment variables plus explicit services.

    Required:
        - S3_BUCKET: Name of the bucket holding the archives
        - services: Dict[str, Dict[str, str]] mapping service names to
          {path name: absolute directory}

    Optional environment variables:
        - S3_PREFIX: Key prefix (default: stash)
        - AWS_REGION / AWS_DEFAULT_REGION: Region (default: us-east-1)
        - AWS_ENDPOINT_URL_S3 / AWS_ENDPOINT_URL: S3-compatible endpoint
        - STASH_RETENTION_DAYS: Positive integer (default: 30)
        - STASH_MIN_SIZE: Minimum archive size in bytes (default: 0)
        - STASH_TEMP_DIR: Scratch directory (default: system temp)
        - STASH_COMPRESSION: true/false (default: true)
        - STASH_PRESERVE_ACLS: true/false (default: false)
        - STASH_AUTO_CLEANUP: true/false (default: false)
    """

    if not services:
        raise ConfigurationError(explain_missing_services_argument())

    bucket = os.getenv("S3_BUCKET")
    if not bucket:
        raise ConfigurationError(explain_missing_bucket_env())

    prefix = os.getenv("S3_PREFIX", "stash")
    region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1"
    endpoint_url = os.getenv("AWS_ENDPOINT_URL_S3") or os.getenv("AWS_ENDPOINT_URL")

    retention_days = _parse_int("STASH_RETENTION_DAYS", 30)
    if retention_days == 0:
        raise ConfigurationError(explain_invalid_retention(retention_days))

    return create_config(
        bucket=bucket,
        services=services,
        prefix=prefix,
        region=region,
        endpoint_url=endpoint_url,
        retention_days=retention_days,
        min_size=_parse_int("STASH_MIN_SIZE", 0),
        temp_dir=os.getenv("STASH_TEMP_DIR") or None,
        compression=_parse_bool("STASH_COMPRESSION", True),
        acls=_parse_bool("STASH_PRESERVE_ACLS", False),
        auto_cleanup=_parse_bool("STASH_AUTO_CLEANUP", False),
    )
