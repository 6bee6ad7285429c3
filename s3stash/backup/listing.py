# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Listing - Inventory of stored archives.
"""

from typing import Dict, List

import structlog

from s3stash.keys import BackupRecord
from s3stash.storage import ObjectStore

logger = structlog.get_logger()


async def list_backups(store: ObjectStore, service: str | None = None) -> Dict[str, List[BackupRecord]]:
    """
    List stored archives grouped by service.

    Args:
        store: Connected object store
        service: Restrict the listing to one service

    Returns:
        Mapping of service name to its archives, newest first. Services
        appear in name order.
    """
    records = await store.list_service(service)

    grouped: Dict[str, List[BackupRecord]] = {}
    for record in records:
        grouped.setdefault(record.service, []).append(record)

    for name, members in grouped.items():
        members.sort(key=lambda r: (r.timestamp, r.path, r.key), reverse=True)

    logger.debug("list_backups_completed", service=service, services=len(grouped), archives=len(records))
    return dict(sorted(grouped.items()))
