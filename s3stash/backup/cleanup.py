# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Cleanup - Apply the retention policy to stored archives.

Deletion decisions come from select_for_deletion; this module only lists,
deletes and reports. A service whose listing or deletion fails is recorded
and skipped so the remaining services are still cleaned.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Dict, List

import structlog

from s3stash.config import StashConfig
from s3stash.exceptions import StorageError
from s3stash.keys import BackupRecord, as_utc
from s3stash.notifications import (
    NotificationKind,
    NotificationSink,
    format_bytes,
    safe_notify,
)
from s3stash.selection import select_for_deletion
from s3stash.storage import ObjectStore

logger = structlog.get_logger()

ALL_SERVICES = "all"


@dataclass
class CleanupOptions:
    """
    Attributes:
        service: Service name; None or "all" cleans every service
        older_than: Maximum age in days; 0 uses the configured retention
        dry_run: Report what would be deleted without deleting
        keep_latest: Newest archives per path that are always kept
    """

    service: str | None = None
    older_than: int = 0
    dry_run: bool = False
    keep_latest: int = 0


@dataclass
class CleanupResult:
    operation_id: str
    dry_run: bool = False
    services: List[str] = field(default_factory=list)
    deleted: List[BackupRecord] = field(default_factory=list)
    bytes_freed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.services) - len(self.errors)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors


class CleanupEngine:
    """
    Delete archives that fall outside the retention policy.

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

    async def run(self, options: CleanupOptions, now: datetime | None = None) -> CleanupResult:
        """
        Run one cleanup pass.

        Args:
            options: What to clean
            now: Reference time for age calculations (current UTC time
                when omitted)

        Returns:
            CleanupResult; check ``errors`` for services that failed

        Raises:
            ConfigurationError: If the policy is invalid or the service is
                unknown
        """
        from ulid import ULID

        max_age_days = options.older_than or self.config.retention_days
        policy = self.config.retention_policy(
            keep_latest=options.keep_latest,
            max_age_days=max_age_days,
        )

        if options.service in (None, "", ALL_SERVICES):
            services = sorted(self.config.services)
        else:
            services = [self.config.service(options.service).name]

        now = as_utc(now) if now else datetime.now(UTC)
        result = CleanupResult(operation_id=str(ULID()), dry_run=options.dry_run, services=services)

        logger.info(
            "cleanup_started",
            operation_id=result.operation_id,
            services=services,
            max_age_days=policy.max_age_days,
            keep_latest=policy.keep_latest,
            dry_run=options.dry_run,
        )

        for name in services:
            try:
                records = await self.store.list_service(name)
            except StorageError as e:
                result.errors[name] = str(e)
                logger.error(
                    "cleanup_service_failed",
                    operation_id=result.operation_id,
                    service=name,
                    stage="list",
                    error=str(e),
                )
                continue

            expired = select_for_deletion(records, policy, now)
            if not expired:
                logger.debug("cleanup_service_nothing_expired", service=name, archives=len(records))
                continue

            if options.dry_run:
                for record in expired:
                    logger.info(
                        "cleanup_would_delete",
                        operation_id=result.operation_id,
                        service=name,
                        key=record.key,
                        timestamp=record.stamp,
                        size=record.size,
                    )
            else:
                try:
                    await self.store.delete_many([record.key for record in expired])
                except StorageError as e:
                    failed_keys = e.details.get("failed")
                    if failed_keys is None:
                        expired = []
                    else:
                        expired = [record for record in expired if record.key not in failed_keys]
                    self._credit(result, expired)
                    result.errors[name] = str(e)
                    logger.error(
                        "cleanup_service_failed",
                        operation_id=result.operation_id,
                        service=name,
                        stage="delete",
                        deleted=len(expired),
                        error=str(e),
                    )
                    continue

            self._credit(result, expired)
            logger.info(
                "cleanup_service_completed",
                operation_id=result.operation_id,
                service=name,
                deleted=len(expired),
                dry_run=options.dry_run,
            )

        logger.info(
            "cleanup_completed",
            operation_id=result.operation_id,
            deleted=len(result.deleted),
            bytes_freed=result.bytes_freed,
            errors=len(result.errors),
            dry_run=options.dry_run,
        )

        self._notify(result, options)
        return result

    @staticmethod
    def _credit(result: CleanupResult, deleted: List[BackupRecord]) -> None:
        result.deleted.extend(deleted)
        result.bytes_freed += sum(record.size for record in deleted)

    def _notify(self, result: CleanupResult, options: CleanupOptions) -> None:
        if result.dry_run or not (result.deleted or result.errors):
            return

        subject = options.service if options.service not in (None, "", ALL_SERVICES) else ALL_SERVICES
        details = {
            "Deleted Backups": str(len(result.deleted)),
            "Space Freed": format_bytes(result.bytes_freed),
        }

        error = None
        if result.errors:
            details["Failed Services"] = ", ".join(sorted(result.errors))
            error = StorageError(
                f"Cleanup failed for {len(result.errors)} service(s)",
                details={"errors": dict(result.errors)},
            )
            kind = NotificationKind.WARNING if result.deleted else NotificationKind.ERROR
        else:
            kind = NotificationKind.SUCCESS

        safe_notify(self.notifier, kind, subject, "cleanup", details, error)
