# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration, builder and environment tests.
"""

from pathlib import Path

import pytest

from s3stash.builder import (
    add_service,
    build_config,
    build_from_steps,
    create_config,
    create_empty_config,
    enable_auto_cleanup,
    include_folders,
    preserve_acls,
    retain_for_days,
    with_bucket,
    with_endpoint,
    with_max_concurrent_ops,
    with_min_size,
    with_prefix,
    with_temp_dir,
    without_compression,
)
from s3stash.config import S3Settings, ServiceSpec, StashConfig
from s3stash.env import create_config_from_env
from s3stash.exceptions import ConfigurationError

SERVICES = {"app": {"data": "/srv/app/data", "var/cache": "/srv/app/cache"}}


# ============================================================================
# Builder
# ============================================================================

def test_builder_fluent_api():
    """Builder steps compose into a validated config."""
    config = build_from_steps(
        lambda c: with_bucket(c, "my-backups"),
        lambda c: with_prefix(c, "/nightly/"),
        lambda c: with_endpoint(c, "http://localhost:9000"),
        lambda c: add_service(c, "app", SERVICES["app"]),
        lambda c: include_folders(c, "app", "data", ["uploads"]),
        lambda c: retain_for_days(c, 14),
        lambda c: with_min_size(c, 1024),
        lambda c: with_temp_dir(c, "/tmp/stash"),
        lambda c: with_max_concurrent_ops(c, 4),
        enable_auto_cleanup,
        without_compression,
        preserve_acls,
    )

    assert config.s3.bucket == "my-backups"
    assert config.s3.prefix == "nightly"
    assert config.s3.endpoint_url == "http://localhost:9000"
    assert config.service("app").include_folders == {"data": ["uploads"]}
    assert config.retention_days == 14
    assert config.backup.min_size == 1024
    assert config.backup.temp_dir == Path("/tmp/stash")
    assert config.backup.compression is False
    assert config.backup.preserve_acls is True
    assert config.auto_cleanup is True
    assert config.max_concurrent_ops == 4


def test_builder_steps_do_not_mutate_input():
    base = create_empty_config()
    updated = add_service(with_bucket(base, "my-backups"), "app", {"data": "/srv"})

    assert base["bucket"] == "" and base["services"] == {}
    assert updated["services"] == {"app": {"data": "/srv"}}


@pytest.mark.parametrize(
    "step",
    [
        lambda c: retain_for_days(c, 0),
        lambda c: with_min_size(c, -1),
        lambda c: with_max_concurrent_ops(c, 0),
    ],
)
def test_builder_rejects_bad_values(step):
    with pytest.raises(ValueError):
        step(create_empty_config())


def test_build_config_requires_bucket():
    with pytest.raises(ConfigurationError):
        build_config(add_service(create_empty_config(), "app", {"data": "/srv"}))


def test_create_config_simple():
    config = create_config(
        bucket="my-backups",
        services=SERVICES,
        include={"app": {"data": ["uploads", "db"]}},
        retention_days=7,
        max_concurrent_ops=2,
    )

    assert isinstance(config, StashConfig)
    assert config.s3.prefix == "stash"
    assert sorted(config.service("app").paths) == ["data", "var/cache"]
    assert config.max_concurrent_ops == 2


def test_with_updates_returns_copy():
    config = create_config(bucket="my-backups", services=SERVICES)
    updated = config.with_updates(retention_days=3)

    assert updated.retention_days == 3
    assert config.retention_days == 30


# ============================================================================
# Validation
# ============================================================================

def test_config_validation_collects_all_errors():
    """Every problem is reported in one ConfigurationError."""
    with pytest.raises(ConfigurationError) as exc_info:
        StashConfig(
            s3=S3Settings(bucket="Bad_Bucket", multipart_chunk_size=1),
            services={"app": ServiceSpec(name="app", paths={"data": "relative/path"})},
            retention_days=0,
            max_concurrent_ops=0,
        )

    errors = exc_info.value.details["errors"]
    assert len(errors) == 5
    assert any("bucket" in e for e in errors)
    assert any("absolute" in e for e in errors)


@pytest.mark.parametrize("path_name", ["", "/data", "data/", "a//b"])
def test_invalid_path_names(path_name):
    spec = ServiceSpec(name="app", paths={path_name: "/srv"})
    assert spec.validate()


def test_include_folders_for_unknown_path_rejected():
    with pytest.raises(ConfigurationError):
        create_config(bucket="my-backups", services=SERVICES, include={"app": {"nope": ["x"]}})


def test_services_required():
    with pytest.raises(ConfigurationError):
        create_config(bucket="my-backups")


def test_unknown_service_lists_available():
    config = create_config(bucket="my-backups", services=SERVICES)

    with pytest.raises(ConfigurationError) as exc_info:
        config.service("web")

    assert "app" in str(exc_info.value)


def test_retention_policy_from_config():
    config = create_config(bucket="my-backups", services=SERVICES, retention_days=9)

    policy = config.retention_policy(keep_latest=1)

    assert (policy.max_age_days, policy.keep_latest) == (9, 1)


# ============================================================================
# Environment
# ============================================================================

@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "S3_BUCKET",
        "S3_PREFIX",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "AWS_ENDPOINT_URL_S3",
        "AWS_ENDPOINT_URL",
        "STASH_RETENTION_DAYS",
        "STASH_MIN_SIZE",
        "STASH_TEMP_DIR",
        "STASH_COMPRESSION",
        "STASH_PRESERVE_ACLS",
        "STASH_AUTO_CLEANUP",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_config_from_env(clean_env):
    clean_env.setenv("S3_BUCKET", "env-backups")
    clean_env.setenv("S3_PREFIX", "prod")
    clean_env.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    clean_env.setenv("AWS_ENDPOINT_URL", "http://minio:9000")
    clean_env.setenv("STASH_RETENTION_DAYS", "14")
    clean_env.setenv("STASH_MIN_SIZE", "512")
    clean_env.setenv("STASH_COMPRESSION", "false")
    clean_env.setenv("STASH_AUTO_CLEANUP", "yes")

    config = create_config_from_env(services=SERVICES)

    assert config.s3.bucket == "env-backups"
    assert config.s3.prefix == "prod"
    assert config.s3.region == "eu-west-1"
    assert config.s3.endpoint_url == "http://minio:9000"
    assert config.retention_days == 14
    assert config.backup.min_size == 512
    assert config.backup.compression is False
    assert config.auto_cleanup is True


def test_config_from_env_requires_bucket_and_services(clean_env):
    with pytest.raises(ConfigurationError) as exc_info:
        create_config_from_env(services=SERVICES)
    assert "S3_BUCKET" in str(exc_info.value)

    clean_env.setenv("S3_BUCKET", "env-backups")
    with pytest.raises(ConfigurationError):
        create_config_from_env(services={})


@pytest.mark.parametrize(
    "name,value",
    [
        ("STASH_RETENTION_DAYS", "a week"),
        ("STASH_RETENTION_DAYS", "0"),
        ("STASH_MIN_SIZE", "-5"),
        ("STASH_COMPRESSION", "maybe"),
    ],
)
def test_config_from_env_rejects_bad_values(clean_env, name, value):
    clean_env.setenv("S3_BUCKET", "env-backups")
    clean_env.setenv(name, value)

    with pytest.raises(ConfigurationError):
        create_config_from_env(services=SERVICES)
