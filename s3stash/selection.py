# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Selection - Pure decision logic over sets of archive records.

Two selectors live here:

- select_for_deletion: which archives a retention policy expires
- select_for_restore: which archives a restore request targets

Neither touches the network or the filesystem. Grouping uses explicit sort
keys so the output is identical from run to run.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from itertools import groupby
from typing import Dict, Iterable, List

import structlog

from s3stash.config import RetentionPolicy
from s3stash.exceptions import SelectionError
from s3stash.keys import BackupRecord, as_utc, parse_timestamp

logger = structlog.get_logger()

DATE_FORMAT = "%Y%m%d"


def group_records(
    records: Iterable[BackupRecord],
    by_service: bool = True,
) -> Dict[tuple[str, str], List[BackupRecord]]:
    """
    Group records by (service, path), each group sorted newest first.

    With by_service=False the service part of the group key is blank, which
    is how the restore selector groups a single service's records by path.
    """

    def group_key(record: BackupRecord) -> tuple[str, str]:
        return (record.service if by_service else "", record.path)

    groups: Dict[tuple[str, str], List[BackupRecord]] = {}
    for key, members in groupby(sorted(records, key=group_key), key=group_key):
        groups[key] = sorted(members, key=lambda r: (r.timestamp, r.key), reverse=True)
    return groups


# ============================================================================
# Retention
# ============================================================================


def select_for_deletion(
    records: Iterable[BackupRecord],
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> List[BackupRecord]:
    """
    Select the archives a retention policy expires.

    Within each (service, path) group the keep_latest newest archives are
    always kept. Every other archive strictly older than now - max_age_days
    is selected.

    Args:
        records: Archive records, possibly spanning several groups
        policy: Validated retention policy
        now: Reference time (current UTC time when omitted)

    Returns:
        Selected records, oldest first
    """
    now = as_utc(now) if now else datetime.now(UTC)
    cutoff = now - timedelta(days=policy.max_age_days)

    selected: List[BackupRecord] = []

    for (service, path), group in group_records(records).items():
        candidates = group[policy.keep_latest:]
        expired = [record for record in candidates if record.timestamp < cutoff]
        selected.extend(expired)

        logger.debug(
            "retention_group_evaluated",
            service=service,
            path=path,
            total=len(group),
            candidates=len(candidates),
            expired=len(expired),
        )

    selected.sort(key=lambda r: (r.timestamp, r.service, r.path, r.key))
    return selected


# ============================================================================
# Restore
# ============================================================================


@dataclass(frozen=True)
class DateFilter:
    """
    A restore date filter.

    exact=True matches one canonical timestamp (YYYYMMDD-HHMMSS);
    exact=False matches every archive taken on a calendar day (YYYYMMDD).
    """

    token: str
    exact: bool

    def matches(self, record: BackupRecord) -> bool:
        if self.exact:
            return record.stamp == self.token
        return record.timestamp.strftime(DATE_FORMAT) == self.token


def parse_date_filter(token: str | None) -> DateFilter | None:
    """
    Parse a restore date token.

    Returns None when no filter was given.

    Raises:
        SelectionError: If the token is neither YYYYMMDD nor YYYYMMDD-HHMMSS
    """
    if not token:
        return None

    if len(token) == 15 and token[8] == "-" and parse_timestamp(token) is not None:
        return DateFilter(token=token, exact=True)

    if len(token) == 8 and token.isascii() and token.isdigit():
        try:
            datetime.strptime(token, DATE_FORMAT)
        except ValueError:
            pass
        else:
            return DateFilter(token=token, exact=False)

    raise SelectionError(
        f"Invalid date format: expected YYYYMMDD or YYYYMMDD-HHMMSS, got {token}",
        details={"date": token},
    )


def select_for_restore(
    records: Iterable[BackupRecord],
    date: str | DateFilter | None = None,
    latest: bool = False,
) -> List[BackupRecord]:
    """
    Select the archives to restore for one service.

    - No date filter: exactly the newest archive of every path.
    - latest=True: the newest matching archive of every path.
    - Date filter without latest: every matching archive of every path,
      newest first. A YYYYMMDD filter can therefore yield several archives
      for the same path.

    Args:
        records: Archive records of one service
        date: Date token or parsed filter
        latest: Restrict the result to one archive per path

    Returns:
        Selected records ordered by path, newest first within a path

    Raises:
        SelectionError: If the date token is malformed
    """
    date_filter = parse_date_filter(date) if isinstance(date, str) or date is None else date

    candidates = list(records)
    if date_filter is not None:
        candidates = [record for record in candidates if date_filter.matches(record)]

    selected: List[BackupRecord] = []
    for _, group in group_records(candidates, by_service=False).items():
        if latest or date_filter is None:
            selected.append(group[0])
        else:
            selected.extend(group)

    return selected
