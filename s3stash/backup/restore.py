# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Restore Manager - Bring archived paths back onto disk.

Restore is selection followed by extraction. Selection problems (unknown
service, bad date, nothing to restore) are fatal and raised before any
file is touched. Once extraction starts, each archive is restored on its
own and a failure is recorded in its result.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from itertools import groupby
from pathlib import Path
from typing import List, Tuple

import structlog

from s3stash.archive import Archiver, extract_archive_file
from s3stash.backup.manager import scratch_file
from s3stash.config import StashConfig
from s3stash.exceptions import RestoreError
from s3stash.keys import BackupRecord
from s3stash.notifications import (
    NotificationKind,
    NotificationSink,
    format_bytes,
    safe_notify,
)
from s3stash.selection import parse_date_filter, select_for_restore
from s3stash.storage import ObjectStore

logger = structlog.get_logger()


@dataclass
class RestoreOptions:
    """
    What to restore.

    Attributes:
        service: Service name
        date: Optional YYYYMMDD or YYYYMMDD-HHMMSS filter
        latest: Restore only the newest matching archive of each path
        dry_run: Report what would be restored without touching disk
        force: Restore into destinations that already exist
        dest_path: Restore under dest_path/<path> instead of the
            configured locations
    """

    service: str
    date: str | None = None
    latest: bool = False
    dry_run: bool = False
    force: bool = False
    dest_path: Path | None = None


@dataclass
class RestoreResult:
    """Outcome of restoring one archive."""

    service: str
    path: str
    restore_path: str
    record: BackupRecord | None = None
    files_restored: int = 0
    skipped_entries: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    dry_run: bool = False
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RestoreRunResult:
    """Outcome of one restore request."""

    operation_id: str
    service: str
    results: List[RestoreResult] = field(default_factory=list)
    dry_run: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class RestoreEngine:
    """
    Restore archives from the object store.

    Args:
        config: Validated configuration snapshot
        store: Connected object store
        notifier: Optional notification sink
    """

    def __init__(
        self,
        config: StashConfig,
        store: ObjectStore,
        notifier: NotificationSink | None = None,
    ):
        self.config = config
        self.store = store
        self.notifier = notifier
        self.archiver = Archiver(
            compression=config.backup.compression,
            preserve_acls=config.backup.preserve_acls,
        )

    async def run_service(self, options: RestoreOptions) -> RestoreRunResult:
        """
        Restore a service's archives.

        Raises:
            ConfigurationError: If the service is unknown
            SelectionError: If the date filter is malformed
            RestoreError: If the service has no archives or none match
            StorageError: If the archives cannot be listed
        """
        from ulid import ULID

        service = self.config.service(options.service)
        date_filter = parse_date_filter(options.date)

        operation_id = str(ULID())
        start_time = datetime.now(UTC)

        logger.info(
            "restore_service_started",
            operation_id=operation_id,
            service=service.name,
            date=options.date,
            latest=options.latest,
            dry_run=options.dry_run,
        )

        records = await self.store.list_service(service.name)
        if not records:
            raise RestoreError(
                f"No backups found for service {service.name}",
                details={"service": service.name},
            )

        selected = select_for_restore(records, date_filter, options.latest)
        if not selected:
            raise RestoreError(
                f"No backups match the requested date for service {service.name}",
                details={"service": service.name, "date": options.date},
            )

        plan: List[Tuple[BackupRecord, Path]] = []
        for record in selected:
            if record.path not in service.paths:
                logger.warning(
                    "restore_path_unconfigured",
                    operation_id=operation_id,
                    service=service.name,
                    path=record.path,
                    key=record.key,
                )
                continue
            if options.dest_path is not None:
                destination = Path(options.dest_path) / record.path
            else:
                destination = Path(service.paths[record.path])
            plan.append((record, destination))

        semaphore = asyncio.Semaphore(self.config.max_concurrent_ops)

        # Archives of the same path share a destination, so they run in order
        async def restore_path(items: List[Tuple[BackupRecord, Path]]) -> List[RestoreResult]:
            async with semaphore:
                return [
                    await self._restore_record(operation_id, record, destination, options)
                    for record, destination in items
                ]

        by_path = [list(items) for _, items in groupby(plan, key=lambda item: item[0].path)]
        batches = await asyncio.gather(*(restore_path(items) for items in by_path))

        run = RestoreRunResult(
            operation_id=operation_id,
            service=service.name,
            results=[result for batch in batches for result in batch],
            dry_run=options.dry_run,
            duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
        )

        logger.info(
            "restore_service_completed",
            operation_id=operation_id,
            service=service.name,
            succeeded=run.succeeded,
            failed=run.failed,
            dry_run=options.dry_run,
        )
        return run

    async def restore_local(
        self,
        archive: Path,
        dest: Path,
        force: bool = False,
        dry_run: bool = False,
    ) -> RestoreResult:
        """
        Extract a local archive file into dest.

        Raises:
            RestoreError: If the archive is missing or dest exists without force
        """
        archive = Path(archive)
        dest = Path(dest)

        if not archive.is_file():
            raise RestoreError(f"Archive file not found: {archive}", details={"archive": str(archive)})
        if dest.exists() and not force:
            raise RestoreError(
                f"Destination path {dest} already exists, use force to overwrite",
                details={"dest_path": str(dest)},
            )

        result = RestoreResult(service="local", path=archive.name, restore_path=str(dest), dry_run=dry_run)
        if dry_run:
            logger.info("restore_local_dry_run", archive=str(archive), dest_path=str(dest))
            return result

        start_time = datetime.now(UTC)
        logger.info("restore_local_started", archive=str(archive), dest_path=str(dest))

        try:
            stats = await extract_archive_file(self.archiver, archive, dest)
            result.files_restored = stats.files_processed
            result.skipped_entries = list(stats.skipped)
        except Exception as e:
            result.error = e
            logger.error("restore_local_failed", archive=str(archive), error=str(e))
        finally:
            result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()

        self._notify(result, archive_size=archive.stat().st_size)
        return result

    async def _restore_record(
        self,
        operation_id: str,
        record: BackupRecord,
        destination: Path,
        options: RestoreOptions,
    ) -> RestoreResult:
        """Restore one archive; failures are captured in the result."""
        result = RestoreResult(
            service=record.service,
            path=record.path,
            restore_path=str(destination),
            record=record,
            dry_run=options.dry_run,
        )

        if options.dry_run:
            logger.info(
                "restore_dry_run",
                operation_id=operation_id,
                service=record.service,
                path=record.path,
                key=record.key,
                dest_path=str(destination),
                size=record.size,
            )
            return result

        start_time = datetime.now(UTC)
        logger.info(
            "restore_record_started",
            operation_id=operation_id,
            service=record.service,
            path=record.path,
            key=record.key,
            dest_path=str(destination),
        )

        try:
            await self._download_and_extract(record, destination, options.force, result)
        except Exception as e:
            result.error = e
            logger.error(
                "restore_record_failed",
                operation_id=operation_id,
                service=record.service,
                path=record.path,
                key=record.key,
                error=str(e),
            )
        else:
            logger.info(
                "restore_record_completed",
                operation_id=operation_id,
                service=record.service,
                path=record.path,
                files=result.files_restored,
                skipped=len(result.skipped_entries),
            )
        finally:
            result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()

        self._notify(result, archive_size=record.size)
        return result

    async def _download_and_extract(
        self,
        record: BackupRecord,
        destination: Path,
        force: bool,
        result: RestoreResult,
    ) -> None:
        if destination.exists() and not force:
            raise RestoreError(
                f"Destination path {destination} already exists, use force to overwrite",
                details={"dest_path": str(destination), "key": record.key},
            )

        archive_path = scratch_file(
            self.config.backup.temp_dir,
            record.service,
            record.path,
            record.key.endswith(".gz"),
        )
        try:
            await self.store.download(record.key, archive_path)
            stats = await extract_archive_file(self.archiver, archive_path, destination)
            result.files_restored = stats.files_processed
            result.skipped_entries = list(stats.skipped)
        finally:
            archive_path.unlink(missing_ok=True)

    def _notify(self, result: RestoreResult, archive_size: int = 0) -> None:
        details = {
            "Service": result.service,
            "Path": result.path,
            "Restore Path": result.restore_path,
        }
        if result.duration_seconds > 0:
            details["Duration"] = f"{result.duration_seconds:.1f}s"
        if archive_size > 0:
            details["Archive Size"] = format_bytes(archive_size)
        if result.record is not None:
            details["Backup Date"] = result.record.timestamp.strftime("%Y-%m-%d %H:%M:%S")

        kind = NotificationKind.SUCCESS if result.ok else NotificationKind.ERROR
        safe_notify(self.notifier, kind, result.service, "restore", details, result.error)
