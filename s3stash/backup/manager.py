# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Backup Manager - Archive configured paths and upload them.

Each path of a service is handled independently: it is archived into a
scratch file, checked against the minimum size, uploaded, and its outcome
recorded. A failing path never stops its siblings; only structural
problems (unknown service, nothing to back up) abort a run before any path
is attempted.
"""

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Sequence, Tuple

import structlog

from s3stash.archive import Archiver, create_archive_file
from s3stash.config import ServiceSpec, StashConfig
from s3stash.exceptions import BackupError, ConfigurationError, StashError
from s3stash.keys import BackupRecord, archive_suffix
from s3stash.notifications import (
    NotificationKind,
    NotificationSink,
    format_bytes,
    safe_notify,
)
from s3stash.storage import ObjectStore

if TYPE_CHECKING:
    from s3stash.backup.cleanup import CleanupResult

logger = structlog.get_logger()


@dataclass
class BackupResult:
    """Outcome of backing up one path."""

    service: str
    path: str
    source_path: str = ""
    record: BackupRecord | None = None
    archive_size: int = 0
    files_processed: int = 0
    skipped_entries: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BackupRunResult:
    """Outcome of backing up one service."""

    operation_id: str
    service: str
    results: List[BackupResult] = field(default_factory=list)
    duration_seconds: float = 0.0
    cleanup: "CleanupResult | None" = None
    cleanup_error: str | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def scratch_file(temp_dir: Path | None, service: str, path: str, compression: bool) -> Path:
    """Create an empty scratch file for an archive in flight."""
    if temp_dir is not None:
        Path(temp_dir).mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        prefix=f"stash-{service}-{path.replace('/', '_')}-",
        suffix=archive_suffix(compression),
        dir=temp_dir,
    )
    os.close(fd)
    return Path(name)


class BackupEngine:
    """
    Back up configured services to the object store.

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

    async def run_service(
        self,
        name: str,
        paths: Sequence[str] | None = None,
    ) -> BackupRunResult:
        """
        Back up every path of a service, or the requested subset.

        Args:
            name: Service name
            paths: Optional path names to restrict the run to; unknown
                names are logged and ignored

        Returns:
            BackupRunResult with one BackupResult per path

        Raises:
            ConfigurationError: If the service is unknown or no requested
                path exists
        """
        from ulid import ULID

        service = self.config.service(name)
        targets = self._resolve_paths(service, paths)

        operation_id = str(ULID())
        start_time = datetime.now(UTC)

        logger.info(
            "backup_service_started",
            operation_id=operation_id,
            service=name,
            paths=len(targets),
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrent_ops)

        async def guarded(path_name: str, location: str) -> BackupResult:
            async with semaphore:
                return await self._backup_path(operation_id, service, path_name, location)

        # gather keeps input order regardless of completion order
        results = await asyncio.gather(
            *(guarded(path_name, location) for path_name, location in targets)
        )

        run = BackupRunResult(
            operation_id=operation_id,
            service=name,
            results=list(results),
            duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
        )

        if self.config.auto_cleanup:
            await self._auto_cleanup(run)

        logger.info(
            "backup_service_completed",
            operation_id=operation_id,
            service=name,
            succeeded=run.succeeded,
            failed=run.failed,
            duration=run.duration_seconds,
        )
        return run

    async def run_all(self, paths: Sequence[str] | None = None) -> Dict[str, BackupRunResult]:
        """
        Back up every configured service, in name order.

        A structural error for one service is recorded as a failed result
        for that service and does not stop the others.
        """
        from ulid import ULID

        logger.info("backup_all_started", services=len(self.config.services))

        runs: Dict[str, BackupRunResult] = {}
        for name in sorted(self.config.services):
            try:
                runs[name] = await self.run_service(name, paths)
            except ConfigurationError as e:
                logger.error("backup_service_failed", service=name, error=str(e))
                runs[name] = BackupRunResult(
                    operation_id=str(ULID()),
                    service=name,
                    results=[BackupResult(service=name, path="", error=e)],
                )

        return runs

    def _resolve_paths(
        self,
        service: ServiceSpec,
        requested: Sequence[str] | None,
    ) -> List[Tuple[str, str]]:
        if not requested:
            targets = sorted(service.paths.items())
        else:
            targets = []
            for path_name in requested:
                if path_name in service.paths:
                    targets.append((path_name, service.paths[path_name]))
                else:
                    logger.warning(
                        "backup_path_unknown",
                        service=service.name,
                        path=path_name,
                    )

        if not targets:
            raise ConfigurationError(
                f"No valid paths to back up for service {service.name}",
                details={"service": service.name, "requested": list(requested or [])},
            )
        return targets

    async def _backup_path(
        self,
        operation_id: str,
        service: ServiceSpec,
        path_name: str,
        location: str,
    ) -> BackupResult:
        """Back up one path; failures are captured in the result."""
        start_time = datetime.now(UTC)
        result = BackupResult(service=service.name, path=path_name, source_path=location)

        logger.info(
            "backup_path_started",
            operation_id=operation_id,
            service=service.name,
            path=path_name,
            source_path=location,
        )

        try:
            await self._archive_and_upload(service, path_name, location, result)
        except Exception as e:
            result.error = e
            logger.error(
                "backup_path_failed",
                operation_id=operation_id,
                service=service.name,
                path=path_name,
                error=str(e),
            )
        else:
            logger.info(
                "backup_path_completed",
                operation_id=operation_id,
                service=service.name,
                path=path_name,
                key=result.record.key if result.record else None,
                files=result.files_processed,
                size=result.archive_size,
                skipped=len(result.skipped_entries),
            )
        finally:
            result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()

        self._notify(result)
        return result

    async def _archive_and_upload(
        self,
        service: ServiceSpec,
        path_name: str,
        location: str,
        result: BackupResult,
    ) -> None:
        if not Path(location).exists():
            raise BackupError(
                f"Source path does not exist: {location}",
                details={"service": service.name, "path": path_name},
            )

        compression = self.config.backup.compression
        archive_path = scratch_file(self.config.backup.temp_dir, service.name, path_name, compression)

        try:
            stats = await create_archive_file(
                self.archiver,
                location,
                archive_path,
                service.include_folders.get(path_name),
            )
            result.files_processed = stats.files_processed
            result.skipped_entries = list(stats.skipped)
            result.archive_size = archive_path.stat().st_size

            min_size = self.config.backup.min_size
            if min_size > 0 and result.archive_size < min_size:
                raise BackupError(
                    f"Archive size ({result.archive_size} bytes) is below minimum "
                    f"threshold ({min_size} bytes)",
                    details={"service": service.name, "path": path_name},
                )

            result.record = await self.store.upload(
                archive_path,
                service.name,
                path_name,
                compression=compression,
            )
        finally:
            archive_path.unlink(missing_ok=True)

    def _notify(self, result: BackupResult) -> None:
        details = {"Service": result.service, "Path": result.path}
        if result.duration_seconds > 0:
            details["Duration"] = f"{result.duration_seconds:.1f}s"
        if result.archive_size > 0:
            details["Archive Size"] = format_bytes(result.archive_size)
        if result.record is not None:
            details["S3 Key"] = result.record.key
            details["Backup Time"] = result.record.timestamp.strftime("%Y-%m-%d %H:%M:%S")

        kind = NotificationKind.SUCCESS if result.ok else NotificationKind.ERROR
        safe_notify(self.notifier, kind, result.service, "backup", details, result.error)

    async def _auto_cleanup(self, run: BackupRunResult) -> None:
        """Expire old archives of the service, only after a successful path."""
        from s3stash.backup.cleanup import CleanupEngine, CleanupOptions

        if run.succeeded == 0:
            logger.debug("auto_cleanup_skipped", service=run.service, reason="no_successful_backup")
            return

        logger.info("auto_cleanup_started", service=run.service)
        engine = CleanupEngine(self.config, self.store, self.notifier)

        try:
            run.cleanup = await engine.run(
                CleanupOptions(service=run.service, keep_latest=1)
            )
        except StashError as e:
            run.cleanup_error = str(e)
            logger.warning("auto_cleanup_failed", service=run.service, error=str(e))
            return

        if run.cleanup.errors:
            run.cleanup_error = "; ".join(run.cleanup.errors.values())
            logger.warning("auto_cleanup_incomplete", service=run.service, errors=run.cleanup.errors)
        else:
            logger.info(
                "auto_cleanup_completed",
                service=run.service,
                deleted=len(run.cleanup.deleted),
            )
