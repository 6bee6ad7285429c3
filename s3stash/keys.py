# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Keys - Object key naming for stored archives.

Every archive lives at:

    {prefix}/{service}/{path}/{YYYYMMDD-HHMMSS}.tar.gz

or with a ``.tar`` suffix when compression is disabled. The timestamp is
UTC with second resolution; its fixed-width form sorts lexicographically in
chronological order. The path name may itself contain ``/``.

Decoding is strict: anything that does not match the layout exactly is a
foreign object and decodes to None, so unrelated objects can share the
prefix.
"""

import re
from dataclasses import dataclass
from datetime import datetime, UTC

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
TIMESTAMP_LENGTH = 15

COMPRESSED_SUFFIX = ".tar.gz"
PLAIN_SUFFIX = ".tar"

_TIMESTAMP_RE = re.compile(r"\d{8}-\d{6}", re.ASCII)


@dataclass(frozen=True)
class DecodedKey:
    """The parts recovered from an archive key."""

    service: str
    path: str
    timestamp: datetime
    compressed: bool


def as_utc(moment: datetime) -> datetime:
    """Attach UTC to a naive datetime; convert an aware one to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def format_timestamp(moment: datetime) -> str:
    """
    Render a moment in canonical form.

    Naive datetimes are taken to be UTC; aware ones are converted.
    Sub-second precision is dropped.
    """
    return as_utc(moment).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime | None:
    """Parse a canonical timestamp, returning None for anything else."""
    if len(text) != TIMESTAMP_LENGTH or not _TIMESTAMP_RE.fullmatch(text):
        return None
    try:
        parsed = datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=UTC)


def canonical_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def archive_suffix(compression: bool) -> str:
    return COMPRESSED_SUFFIX if compression else PLAIN_SUFFIX


def root_prefix(prefix: str) -> str:
    """Listing prefix covering every archive under the store prefix."""
    return f"{prefix}/" if prefix else ""


def service_prefix(prefix: str, service: str) -> str:
    """Listing prefix covering every archive of one service."""
    return f"{root_prefix(prefix)}{service}/"


def path_prefix(prefix: str, service: str, path: str) -> str:
    """Listing prefix covering every archive of one (service, path)."""
    return f"{service_prefix(prefix, service)}{path}/"


def encode_key(
    prefix: str,
    service: str,
    path: str,
    timestamp: datetime,
    compression: bool = True,
) -> str:
    """
    Build the object key for an archive.

    Args:
        prefix: Store prefix (may be empty)
        service: Service name, without "/"
        path: Path name, "/" allowed between non-empty segments
        timestamp: Moment the archive was taken
        compression: Selects the .tar.gz or .tar suffix

    Returns:
        The object key

    Raises:
        ValueError: If service or path cannot be encoded unambiguously
    """
    if not service or "/" in service:
        raise ValueError(f"Invalid service name for key: {service!r}")
    if not path or any(not segment for segment in path.split("/")):
        raise ValueError(f"Invalid path name for key: {path!r}")

    filename = f"{format_timestamp(timestamp)}{archive_suffix(compression)}"
    return f"{path_prefix(prefix, service, path)}{filename}"


def decode_key(key: str, prefix: str) -> DecodedKey | None:
    """
    Recover (service, path, timestamp) from an object key.

    Returns None for any key that is not an archive key under prefix.
    """
    base = root_prefix(prefix)
    if not key.startswith(base):
        return None

    parts = key[len(base):].split("/")
    if len(parts) < 3 or any(not part for part in parts):
        return None

    service = parts[0]
    path = "/".join(parts[1:-1])
    filename = parts[-1]

    if filename.endswith(COMPRESSED_SUFFIX):
        stem, compressed = filename[: -len(COMPRESSED_SUFFIX)], True
    elif filename.endswith(PLAIN_SUFFIX):
        stem, compressed = filename[: -len(PLAIN_SUFFIX)], False
    else:
        return None

    timestamp = parse_timestamp(stem)
    if timestamp is None:
        return None

    return DecodedKey(
        service=service,
        path=path,
        timestamp=timestamp,
        compressed=compressed,
    )


@dataclass(frozen=True)
class BackupRecord:
    """
    One stored archive generation.

    Identity is the object key; records are never mutated, only listed
    or deleted.
    """

    service: str
    path: str
    timestamp: datetime
    key: str
    size: int = 0
    etag: str = ""

    @property
    def stamp(self) -> str:
        """Canonical text form of the timestamp."""
        return format_timestamp(self.timestamp)

    @property
    def group(self) -> tuple[str, str]:
        return (self.service, self.path)

    @classmethod
    def from_key(
        cls,
        key: str,
        prefix: str,
        size: int = 0,
        etag: str = "",
    ) -> "BackupRecord | None":
        """Build a record from a listed key, or None for foreign objects."""
        decoded = decode_key(key, prefix)
        if decoded is None:
            return None
        return cls(
            service=decoded.service,
            path=decoded.path,
            timestamp=decoded.timestamp,
            key=key,
            size=size,
            etag=etag.strip('"'),
        )


def record_sort_key(record: BackupRecord) -> tuple[str, str, datetime, str]:
    """Deterministic (service, path, timestamp, key) ordering."""
    return (record.service, record.path, record.timestamp, record.key)
