# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for s3stash.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""

from typing import Iterable


def explain_missing_bucket_env() -> str:
    """
    Explain that the S3 bucket environment variable is missing.
    """

    return (
        "S3 bucket is not configured. "
        "Set the S3_BUCKET environment variable or pass bucket=... to create_config()."
    )


def explain_missing_services_argument() -> str:
    """
    Explain that services configuration is required.
    """

    return (
        "services configuration is required but was not provided. "
        "s3stash cannot guess which directories to back up. "
        "Pass services={\"app\": {\"data\": \"/srv/app/data\"}} to "
        "create_config_from_env() or create_config()."
    )


def explain_invalid_int_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a non-negative integer."


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: 'true', 'false', '1', '0', 'yes', 'no'."
    )


def explain_unknown_service(name: str, known: Iterable[str]) -> str:
    """
    Explain that a service name is not part of the configuration.
    """

    available = ", ".join(sorted(known)) or "<none>"
    return f"Service {name!r} not found in configuration. Available services: {available}."


def explain_invalid_retention(days: int) -> str:
    """
    Explain that the retention period is not usable.
    """

    return (
        f"Retention period must be greater than 0 days, got {days}. "
        "Set retention_days in the configuration or pass older_than=..."
    )


def explain_bucket_unreachable(bucket: str) -> str:
    """
    Explain how to troubleshoot a failed bucket probe.
    """

    return (
        f"Cannot access bucket {bucket!r}. Troubleshooting: "
        "1. verify the bucket name is correct; "
        "2. check AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY; "
        "3. ensure the credentials have S3 permissions; "
        "4. for non-AWS S3, verify AWS_ENDPOINT_URL_S3 is set correctly; "
        "5. check your provider's documentation for region settings."
    )
