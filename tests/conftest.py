# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for s3stash tests.

Provides temporary directory trees, configuration helpers, an in-memory
object store for engine tests, and a moto server for ObjectStore tests.
"""

import socket
import tempfile
import uuid
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, Generator, List, Sequence

import pytest
import pytest_asyncio

from s3stash.config import BackupSettings, S3Settings, ServiceSpec, StashConfig
from s3stash.exceptions import StorageError
from s3stash.keys import BackupRecord, canonical_now, encode_key, record_sort_key, root_prefix


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def write_file(path: Path, content: bytes | str = b"test content") -> Path:
    """Write a file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode()
    path.write_bytes(content)
    return path


@pytest.fixture
def sample_tree(temp_dir: Path) -> Path:
    """
    A small service directory:

        app/
            config.yaml
            data/uploads/a.txt
            data/uploads/b.txt
            data/cache/tmp.bin
            logs/app.log
    """
    root = temp_dir / "app"
    write_file(root / "config.yaml", "name: app\n")
    write_file(root / "data" / "uploads" / "a.txt", "alpha")
    write_file(root / "data" / "uploads" / "b.txt", "bravo")
    write_file(root / "data" / "cache" / "tmp.bin", b"\x00" * 64)
    write_file(root / "logs" / "app.log", "started\n")
    return root


def ts(text: str) -> datetime:
    """Parse a YYYYMMDD-HHMMSS literal as UTC."""
    return datetime.strptime(text, "%Y%m%d-%H%M%S").replace(tzinfo=UTC)


def make_record(service: str, path: str, stamp: str, prefix: str = "stash", size: int = 100) -> BackupRecord:
    """Build a record for an archive taken at stamp."""
    return BackupRecord(
        service=service,
        path=path,
        timestamp=ts(stamp),
        key=encode_key(prefix, service, path, ts(stamp)),
        size=size,
    )


def make_config(
    services: Dict[str, Dict[str, str]],
    *,
    temp_dir: Path | None = None,
    **kwargs,
) -> StashConfig:
    """Create a test configuration with sensible defaults."""
    backup_kwargs = {
        key: kwargs.pop(key)
        for key in ("compression", "preserve_acls", "min_size")
        if key in kwargs
    }
    include = kwargs.pop("include", {})
    s3 = kwargs.pop("s3", None) or S3Settings(bucket="test-bucket")

    return StashConfig(
        s3=s3,
        services={
            name: ServiceSpec(name=name, paths=paths, include_folders=include.get(name, {}))
            for name, paths in services.items()
        },
        backup=BackupSettings(temp_dir=temp_dir, **backup_kwargs),
        **kwargs,
    )


# ============================================================================
# In-memory object store
# ============================================================================


class FakeObjectStore:
    """
    In-memory stand-in for ObjectStore.

    Objects are kept as bytes keyed by object key. Failures can be injected
    per service for listing and deletion, per key for deletion, and per
    path for uploads.
    """

    def __init__(self, prefix: str = "stash", bucket: str = "test-bucket"):
        self.prefix = prefix
        self.bucket = bucket
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.fail_list: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_delete_keys: set[str] = set()
        self.fail_upload: set[str] = set()
        self.clock: List[datetime] = []

    def seed(self, record: BackupRecord, body: bytes = b"") -> None:
        self.objects[record.key] = body or b"x" * record.size

    def keys(self) -> List[str]:
        return sorted(self.objects)

    async def upload(self, source: Path, service: str, path: str, *, compression: bool = True, when=None):
        if path in self.fail_upload:
            raise StorageError("S3 put_object failed: injected", details={"path": path})
        moment = when or (self.clock.pop(0) if self.clock else canonical_now())
        key = encode_key(self.prefix, service, path, moment, compression)
        return await self.put(key, source)

    async def put(self, key: str, source: Path) -> BackupRecord:
        data = Path(source).read_bytes()
        record = BackupRecord.from_key(key, self.prefix, size=len(data))
        if record is None:
            raise ValueError(f"Not an archive key: {key}")
        self.objects[key] = data
        self.uploads.append(key)
        return record

    async def download(self, key: str, dest: Path) -> int:
        try:
            data = self.objects[key]
        except KeyError:
            raise StorageError(f"S3 get_object failed: no such key {key}") from None
        Path(dest).write_bytes(data)
        return len(data)

    async def list(self, prefix: str) -> List[BackupRecord]:
        records = []
        for key, data in self.objects.items():
            if not key.startswith(prefix):
                continue
            record = BackupRecord.from_key(key, self.prefix, size=len(data))
            if record is not None:
                records.append(record)
        return sorted(records, key=record_sort_key)

    async def list_service(self, service: str | None = None) -> List[BackupRecord]:
        if service in self.fail_list:
            raise StorageError("S3 list_objects_v2 failed: injected", details={"service": service})
        if service:
            return await self.list(f"{root_prefix(self.prefix)}{service}/")
        return await self.list(root_prefix(self.prefix))

    async def delete_many(self, keys: Sequence[str]) -> None:
        for key in keys:
            record = BackupRecord.from_key(key, self.prefix)
            if record is not None and record.service in self.fail_delete:
                raise StorageError(
                    "S3 delete_objects failed: injected",
                    details={"failed": {k: "injected" for k in keys}},
                )
        failed = {}
        for key in keys:
            if key in self.fail_delete_keys:
                failed[key] = "AccessDenied"
                continue
            self.objects.pop(key, None)
            self.deleted.append(key)
        if failed:
            raise StorageError(f"Failed to delete {len(failed)} of {len(keys)} objects", details={"failed": failed})

    async def close(self) -> None:
        return None


class RecordingSink:
    """Notification sink that keeps every call."""

    def __init__(self):
        self.calls: List[dict] = []

    def __call__(self, kind, subject, operation, details, error=None):
        self.calls.append(
            {
                "kind": kind,
                "subject": subject,
                "operation": operation,
                "details": dict(details),
                "error": error,
            }
        )


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ============================================================================
# moto server
# ============================================================================


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="session")
def moto_endpoint() -> Generator[str, None, None]:
    """Run a moto S3 server for the test session."""
    from moto.server import ThreadedMotoServer

    port = _free_port()
    server = ThreadedMotoServer(ip_address="127.0.0.1", port=port)
    server.start()
    yield f"http://127.0.0.1:{port}"
    server.stop()


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials so botocore never looks for real ones."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest_asyncio.fixture
async def s3_bucket(moto_endpoint: str, aws_credentials) -> str:
    """Create a fresh bucket on the moto server."""
    from aiobotocore.session import get_session

    bucket = f"stash-test-{uuid.uuid4().hex[:12]}"
    session = get_session()
    async with session.create_client("s3", region_name="us-east-1", endpoint_url=moto_endpoint) as client:
        await client.create_bucket(Bucket=bucket)
    return bucket


@pytest_asyncio.fixture
async def s3_client(moto_endpoint: str, aws_credentials):
    """Raw aiobotocore client for inspecting the moto server."""
    from aiobotocore.session import get_session

    session = get_session()
    async with session.create_client("s3", region_name="us-east-1", endpoint_url=moto_endpoint) as client:
        yield client


def s3_settings(bucket: str, endpoint: str, **kwargs) -> S3Settings:
    return S3Settings(bucket=bucket, endpoint_url=endpoint, **kwargs)
