"""Flatten heterogeneous Catalyst Center records into fixed-schema rows.

Different API versions spell the same attribute differently, so every row
attribute is resolved from an ordered list of candidate keys: the first
non-empty string (or non-zero number) wins.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from catalyst_datasource.backend.models import IssueRow

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# attribute -> candidate keys, in priority order
ISSUE_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("issueId", "id", "instanceId"),
    "title": ("name", "title", "issueTitle"),
    "severity": ("priority", "severity"),
    "status": ("issueStatus", "status"),
    "category": ("category", "type"),
    "device": ("deviceId", "deviceIp", "device"),
    "mac": ("macAddress", "clientMac"),
    "details": ("description", "details", "issueDescription"),
}
TIMESTAMP_KEYS = ("timestamp", "firstOccurredTime", "startTime")

# Epoch-millisecond range a datetime can hold (years 1..9999), with a day of slack at each end.
MIN_TIME_MS = int(datetime(1, 1, 2, tzinfo=UTC).timestamp() * 1000)
MAX_TIME_MS = int(datetime(9999, 12, 30, tzinfo=UTC).timestamp() * 1000)


def to_int64(value: object) -> int:
    """Coerce a JSON number (int, float or Decimal) to a 64-bit int.

    Anything that is not a finite number in the int64 range becomes 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        value = int(value)
    elif isinstance(value, Decimal):
        try:
            value = int(value)
        except (InvalidOperation, OverflowError, ValueError):
            return 0
    if not isinstance(value, int):
        return 0
    if value < INT64_MIN or value > INT64_MAX:
        return 0
    return value


def get_str(record: Mapping[str, Any], key: str) -> str:
    value = record.get(key)
    return value if isinstance(value, str) else ""


def first_non_empty(record: Mapping[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        value = get_str(record, key)
        if value.strip():
            return value
    return ""


def first_non_zero(record: Mapping[str, Any], keys: Iterable[str]) -> int:
    for key in keys:
        n = to_int64(record.get(key))
        if n != 0:
            return n
    return 0


def issue_time_ms(record: Mapping[str, Any], window_start_ms: int) -> int:
    """Event time of an issue; missing or unrepresentable timestamps use ``window_start_ms``."""
    ts = first_non_zero(record, TIMESTAMP_KEYS)
    if ts == 0 or not MIN_TIME_MS <= ts <= MAX_TIME_MS:
        return window_start_ms
    return ts


def normalize_issue(
    record: Mapping[str, Any],
    window_start_ms: int,
    site_names: Mapping[str, str] | None = None,
) -> IssueRow:
    """Map one raw issue record onto an ``IssueRow``.

    The timestamp falls back to ``window_start_ms``; the site id is replaced by
    its resolved name when ``site_names`` has one.
    """
    site_id = get_str(record, "siteId")
    site = (site_names or {}).get(site_id, site_id) if site_id else ""
    return IssueRow(
        time_ms=issue_time_ms(record, window_start_ms),
        site=site,
        rule=get_str(record, "ruleId"),
        **{attr: first_non_empty(record, keys) for attr, keys in ISSUE_FIELDS.items()},
    )


def filter_sites(
    records: Iterable[Mapping[str, Any]],
    parent_site_name: str = "",
    site_name: str = "",
) -> list[Mapping[str, Any]]:
    """Keep site-health records matching the parent/site name equality filters."""
    parent = parent_site_name.strip()
    name = site_name.strip()
    return [
        r
        for r in records
        if (not parent or r.get("parentSiteName") == parent) and (not name or r.get("siteName") == name)
    ]


def site_metric_columns(records: Sequence[Mapping[str, Any]], metrics: Iterable[str]) -> dict[str, list[int]]:
    """One int64 column per selected metric; sites without the metric get 0."""
    columns: dict[str, list[int]] = {}
    for metric in metrics:
        name = metric.strip()
        if name and name not in columns:
            columns[name] = [to_int64(r.get(name)) for r in records]
    return columns
