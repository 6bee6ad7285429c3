# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Storage - Object store client for archives.

Wraps an aiobotocore S3 client. Construction goes through
ObjectStore.connect(), which probes the bucket so that bad credentials or
a wrong endpoint surface before any archive work starts.

Every call runs under the configured operation deadline and propagates
cancellation. Uploads are atomic from the caller's point of view: small
archives go through a single PutObject, large ones through a multipart
upload that is aborted on any failure or cancellation, so a partially
uploaded archive is never visible.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Dict, List, Sequence

import aiofiles
import structlog
from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from s3stash.config import S3Settings
from s3stash.errors import explain_bucket_unreachable
from s3stash.exceptions import ConnectivityError, StorageError
from s3stash.keys import (
    BackupRecord,
    canonical_now,
    encode_key,
    record_sort_key,
    root_prefix,
    service_prefix,
)

logger = structlog.get_logger()

# DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

_STORE_ERRORS = (ClientError, BotoCoreError, TimeoutError)


class ObjectStore:
    """
    Archive store backed by an S3 bucket.

    Use ``await ObjectStore.connect(settings)`` (or ``async with``) rather
    than the constructor; the constructor does not verify access.
    """

    def __init__(self, settings: S3Settings, client: Any, exit_stack: AsyncExitStack | None = None):
        self.settings = settings
        self._client = client
        self._exit_stack = exit_stack

    @property
    def bucket(self) -> str:
        return self.settings.bucket

    @property
    def prefix(self) -> str:
        return self.settings.prefix

    @classmethod
    async def connect(cls, settings: S3Settings, *, session: Any = None) -> "ObjectStore":
        """
        Create a client and verify the bucket is reachable.

        Args:
            settings: Connection settings
            session: Optional aiobotocore session (a new one by default)

        Returns:
            Connected ObjectStore

        Raises:
            ConnectivityError: If the bucket cannot be reached or accessed
        """
        session = session or get_session()
        exit_stack = AsyncExitStack()

        try:
            client = await exit_stack.enter_async_context(
                session.create_client(
                    "s3",
                    region_name=settings.region,
                    endpoint_url=settings.endpoint_url,
                    config=AioConfig(
                        connect_timeout=settings.connect_timeout,
                        retries={"max_attempts": 5, "mode": "standard"},
                    ),
                )
            )
            store = cls(settings, client, exit_stack)
            await store._probe()
        except BaseException:
            await exit_stack.aclose()
            raise

        logger.debug(
            "object_store_connected",
            bucket=settings.bucket,
            prefix=settings.prefix,
            endpoint_url=settings.endpoint_url,
        )
        return store

    async def _probe(self) -> None:
        logger.debug("object_store_probe", bucket=self.bucket)
        try:
            async with asyncio.timeout(self.settings.connect_timeout):
                await self._client.head_bucket(Bucket=self.bucket)
        except (*_STORE_ERRORS, OSError) as e:
            raise ConnectivityError(
                explain_bucket_unreachable(self.bucket),
                details={"bucket": self.bucket, "error": str(e)},
            ) from e

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._exit_stack = None

    async def __aenter__(self) -> "ObjectStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _call(self, action: str, awaitable: Awaitable[Any], **details: Any) -> Any:
        """Await one store call under the operation deadline."""
        try:
            async with asyncio.timeout(self.settings.operation_timeout):
                return await awaitable
        except _STORE_ERRORS as e:
            raise StorageError(
                f"S3 {action} failed: {e}",
                details={"bucket": self.bucket, **details},
            ) from e

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        source: Path,
        service: str,
        path: str,
        *,
        compression: bool = True,
        when: datetime | None = None,
    ) -> BackupRecord:
        """Store an archive file under a freshly stamped key."""
        key = encode_key(self.prefix, service, path, when or canonical_now(), compression)
        return await self.put(key, source)

    async def put(self, key: str, source: Path) -> BackupRecord:
        """
        Upload an archive file to key.

        Args:
            key: Archive key produced by encode_key
            source: Local archive file

        Returns:
            Record of the stored archive

        Raises:
            ValueError: If key is not an archive key under the store prefix
            StorageError: If the upload fails
        """
        size = source.stat().st_size
        record = BackupRecord.from_key(key, self.prefix, size=size)
        if record is None:
            raise ValueError(f"Not an archive key under prefix {self.prefix!r}: {key}")

        logger.info("upload_started", bucket=self.bucket, key=key, size=size)

        if size <= self.settings.multipart_threshold:
            async with aiofiles.open(source, "rb") as f:
                body = await f.read()
            response = await self._call(
                "put_object",
                self._client.put_object(Bucket=self.bucket, Key=key, Body=body),
                key=key,
            )
        else:
            response = await self._put_multipart(key, source)

        etag = response.get("ETag", "").strip('"')
        logger.info("upload_completed", bucket=self.bucket, key=key, size=size, etag=etag)

        return BackupRecord(
            service=record.service,
            path=record.path,
            timestamp=record.timestamp,
            key=key,
            size=size,
            etag=etag,
        )

    async def _put_multipart(self, key: str, source: Path) -> Dict[str, Any]:
        created = await self._call(
            "create_multipart_upload",
            self._client.create_multipart_upload(Bucket=self.bucket, Key=key),
            key=key,
        )
        upload_id = created["UploadId"]
        parts: List[Dict[str, Any]] = []

        try:
            async with aiofiles.open(source, "rb") as f:
                part_number = 1
                while True:
                    chunk = await f.read(self.settings.multipart_chunk_size)
                    if not chunk:
                        break
                    response = await self._call(
                        "upload_part",
                        self._client.upload_part(
                            Bucket=self.bucket,
                            Key=key,
                            UploadId=upload_id,
                            PartNumber=part_number,
                            Body=chunk,
                        ),
                        key=key,
                        part=part_number,
                    )
                    parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                    logger.debug("upload_part_completed", key=key, part=part_number, size=len(chunk))
                    part_number += 1

            return await self._call(
                "complete_multipart_upload",
                self._client.complete_multipart_upload(
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": parts},
                ),
                key=key,
            )
        except BaseException:
            await asyncio.shield(self._abort_multipart(key, upload_id))
            raise

    async def _abort_multipart(self, key: str, upload_id: str) -> None:
        try:
            await self._call(
                "abort_multipart_upload",
                self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id),
                key=key,
            )
            logger.warning("multipart_upload_aborted", key=key, upload_id=upload_id)
        except StorageError as e:
            logger.error("multipart_abort_failed", key=key, upload_id=upload_id, error=str(e))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def get(self, key: str) -> AsyncIterator[Any]:
        """
        Open an archive for streaming reads.

        Yields the response body; read it with ``await body.read(n)``.
        """
        logger.info("download_started", bucket=self.bucket, key=key)
        response = await self._call(
            "get_object",
            self._client.get_object(Bucket=self.bucket, Key=key),
            key=key,
        )
        async with response["Body"] as body:
            yield body

    async def download(self, key: str, dest: Path) -> int:
        """Stream an archive into dest, returning the number of bytes written."""
        written = 0
        async with self.get(key) as body:
            async with aiofiles.open(dest, "wb") as out:
                while True:
                    chunk = await self._call("read", body.read(DOWNLOAD_CHUNK_SIZE), key=key)
                    if not chunk:
                        break
                    await out.write(chunk)
                    written += len(chunk)

        logger.info("download_completed", bucket=self.bucket, key=key, size=written)
        return written

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list(self, prefix: str) -> List[BackupRecord]:
        """
        List every archive whose key starts with prefix.

        Pagination is handled internally. Objects that are not archive keys
        are skipped.

        Returns:
            Records sorted by (service, path, timestamp)
        """
        logger.debug("list_started", bucket=self.bucket, prefix=prefix)

        records: List[BackupRecord] = []
        skipped = 0
        paginator = self._client.get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=self.bucket,
            Prefix=prefix,
            PaginationConfig={"PageSize": self.settings.list_page_size},
        ).__aiter__()

        while True:
            try:
                page = await self._call("list_objects_v2", anext(pages), prefix=prefix)
            except StopAsyncIteration:
                break

            for obj in page.get("Contents", []):
                record = BackupRecord.from_key(
                    obj["Key"],
                    self.prefix,
                    size=obj.get("Size", 0),
                    etag=obj.get("ETag", ""),
                )
                if record is None:
                    skipped += 1
                    continue
                records.append(record)

        records.sort(key=record_sort_key)
        logger.debug("list_completed", prefix=prefix, records=len(records), foreign=skipped)
        return records

    async def list_service(self, service: str | None = None) -> List[BackupRecord]:
        """List the archives of one service, or of every service."""
        if service:
            return await self.list(service_prefix(self.prefix, service))
        return await self.list(root_prefix(self.prefix))

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(self, key: str) -> None:
        logger.info("delete_started", bucket=self.bucket, key=key)
        await self._call(
            "delete_object",
            self._client.delete_object(Bucket=self.bucket, Key=key),
            key=key,
        )

    async def delete_many(self, keys: Sequence[str]) -> None:
        """
        Delete several archives with batched DeleteObjects requests.

        A failed batch does not stop the remaining batches. Every key that
        was not deleted is listed in the error's ``failed`` detail, so
        callers can credit the keys that were.

        Raises:
            StorageError: If a request fails or the store rejects any key
        """
        if not keys:
            return

        logger.info("delete_many_started", bucket=self.bucket, count=len(keys))
        failed: Dict[str, str] = {}

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = await self._call(
                    "delete_objects",
                    self._client.delete_objects(
                        Bucket=self.bucket,
                        Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                    ),
                    count=len(batch),
                )
            except StorageError as e:
                failed.update((key, e.message) for key in batch)
                continue

            for error in response.get("Errors", []):
                failed[error.get("Key", "?")] = error.get("Message") or error.get("Code", "unknown")

        if failed:
            logger.warning("delete_many_incomplete", bucket=self.bucket, failed=len(failed), total=len(keys))
            raise StorageError(
                f"Failed to delete {len(failed)} of {len(keys)} objects",
                details={"bucket": self.bucket, "failed": failed},
            )
