# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for retention and restore selection.

These tests verify the retention guarantees:
1. Convergence - a second pass over the survivors selects nothing
2. Keep-latest floor - the newest archives of a path are never selected
3. Restore-latest - one archive per path when latest is requested
"""

from datetime import timedelta, timezone

import pytest

from conftest import make_record, ts
from s3stash.config import RetentionPolicy
from s3stash.exceptions import ConfigurationError, SelectionError
from s3stash.selection import (
    group_records,
    parse_date_filter,
    select_for_deletion,
    select_for_restore,
)

NOW = ts("20240131-000000")


def daily(service: str, path: str, days: int, start: str = "20240101-120000"):
    """One archive per day starting at start."""
    base = ts(start)
    return [
        make_record(service, path, (base + timedelta(days=i)).strftime("%Y%m%d-%H%M%S"))
        for i in range(days)
    ]


# ============================================================================
# Retention
# ============================================================================

def test_retention_selects_only_strictly_older():
    """Archives exactly at the cutoff are kept."""
    at_cutoff = make_record("app", "data", "20240124-000000")
    older = make_record("app", "data", "20240123-235959")

    selected = select_for_deletion([at_cutoff, older], RetentionPolicy(max_age_days=7), NOW)

    assert selected == [older]


def test_retention_reference_time_may_be_naive_or_offset():
    """A naive reference time is read as UTC; an offset one is converted."""
    at_cutoff = make_record("app", "data", "20240124-000000")
    older = make_record("app", "data", "20240123-235959")
    policy = RetentionPolicy(max_age_days=7)

    naive = NOW.replace(tzinfo=None)
    shifted = NOW.astimezone(timezone(timedelta(hours=5)))

    assert select_for_deletion([at_cutoff, older], policy, naive) == [older]
    assert select_for_deletion([at_cutoff, older], policy, shifted) == [older]


def test_retention_end_to_end_example():
    """
    Three archives T1 < T2 < T3, all older than the retention window.

    keep_latest=1 deletes T1 and T2; keep_latest=0 deletes all three.
    """
    t1 = make_record("app", "data", "20231201-000000")
    t2 = make_record("app", "data", "20231202-000000")
    t3 = make_record("app", "data", "20231203-000000")
    records = [t3, t1, t2]

    assert select_for_deletion(records, RetentionPolicy(30, keep_latest=1), NOW) == [t1, t2]
    assert select_for_deletion(records, RetentionPolicy(30, keep_latest=0), NOW) == [t1, t2, t3]


def test_retention_keep_latest_floor_per_group():
    """Every (service, path) group keeps its own newest archives."""
    records = daily("app", "data", 10, "20231001-000000") + daily("db", "dump", 3, "20231001-000000")

    selected = select_for_deletion(records, RetentionPolicy(1, keep_latest=4), NOW)
    survivors = [r for r in records if r not in selected]

    for group in group_records(survivors).values():
        assert len(group) == 4 or group[0].service == "db"
    assert [r for r in selected if r.service == "db"] == []


def test_retention_converges():
    """Applying the policy to its own survivors selects nothing more."""
    records = daily("app", "data", 20) + daily("app", "logs", 20)
    policy = RetentionPolicy(max_age_days=10, keep_latest=2)

    first = select_for_deletion(records, policy, NOW)
    survivors = [r for r in records if r not in first]

    assert first
    assert select_for_deletion(survivors, policy, NOW) == []


def test_retention_output_is_oldest_first():
    records = daily("b", "x", 3, "20231001-000000") + daily("a", "y", 3, "20231001-000000")

    selected = select_for_deletion(records, RetentionPolicy(1), NOW)

    assert [(r.stamp, r.service) for r in selected] == sorted((r.stamp, r.service) for r in selected)
    assert len(selected) == 6


@pytest.mark.parametrize("days,keep", [(0, 0), (-1, 0), (7, -1)])
def test_retention_policy_rejects_invalid_values(days, keep):
    with pytest.raises(ConfigurationError):
        RetentionPolicy(max_age_days=days, keep_latest=keep)


# ============================================================================
# Date filters
# ============================================================================

def test_parse_date_filter_forms():
    assert parse_date_filter(None) is None
    assert parse_date_filter("") is None

    day = parse_date_filter("20240115")
    exact = parse_date_filter("20240115-093000")

    assert day is not None and not day.exact
    assert exact is not None and exact.exact


@pytest.mark.parametrize("token", ["2024-01-15", "20241315", "20240115-9300", "yesterday", "20240115-250000"])
def test_parse_date_filter_rejects_malformed(token):
    with pytest.raises(SelectionError) as exc_info:
        parse_date_filter(token)

    assert "YYYYMMDD" in str(exc_info.value)


# ============================================================================
# Restore selection
# ============================================================================

def test_restore_without_filter_returns_newest_per_path():
    """No filter means exactly one archive, the newest, per path."""
    records = daily("app", "data", 5) + daily("app", "logs", 3)

    selected = select_for_restore(records)

    assert [(r.path, r.stamp) for r in selected] == [
        ("data", "20240105-120000"),
        ("logs", "20240103-120000"),
    ]


def test_restore_day_filter_returns_all_matches_newest_first():
    morning = make_record("app", "data", "20240110-080000")
    evening = make_record("app", "data", "20240110-200000")
    other_day = make_record("app", "data", "20240111-080000")

    selected = select_for_restore([morning, other_day, evening], "20240110")

    assert selected == [evening, morning]


def test_restore_latest_yields_one_per_path():
    """latest=True never returns two archives for the same path."""
    records = [
        make_record("app", "data", "20240110-080000"),
        make_record("app", "data", "20240110-200000"),
        make_record("app", "logs", "20240110-090000"),
    ]

    selected = select_for_restore(records, "20240110", latest=True)

    paths = [r.path for r in selected]
    assert paths == sorted(set(paths))
    assert selected[0].stamp == "20240110-200000"


def test_restore_exact_filter():
    target = make_record("app", "data", "20240110-080000")
    records = [target, make_record("app", "data", "20240110-080001")]

    assert select_for_restore(records, "20240110-080000") == [target]


def test_restore_no_match_returns_empty():
    assert select_for_restore(daily("app", "data", 2), "20200101") == []
