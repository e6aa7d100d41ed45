"""Translate dashboard queries into Catalyst Center URL query parameters.

Filter values are trimmed, case-normalized and checked against allow-lists.
A filter left with no valid values is dropped rather than rejected, and no
parameter is ever sent with an empty value.
"""

from collections.abc import Iterable

from catalyst_datasource.backend.models import CatalystQuery

Params = list[tuple[str, str]]

ALLOWED_PRIORITIES = ("P1", "P2", "P3", "P4")
ALLOWED_ISSUE_STATUSES = ("ACTIVE", "RESOLVED", "IGNORED")

# (default, min, max) page sizes per endpoint
ISSUES_LIMIT = (100, 1, 1000)
SITE_HEALTH_LIMIT = (25, 1, 50)

_TRUTHY = frozenset({"true", "yes", "1"})
_FALSY = frozenset({"false", "no", "0"})


def clamp_limit(n: int, default: int, lo: int, hi: int) -> int:
    """Keep a page size inside the endpoint bounds; ``n <= 0`` means use the default."""
    if n <= 0:
        return default
    return max(lo, min(hi, n))


def parse_boolish(value: str | bool | None) -> bool | None:
    """Parse ``true/yes/1`` and ``false/no/0`` (any case). Anything else is None."""
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    v = value.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    return None


def normalize_priority(priority: str, severity: str = "") -> str | None:
    """Return P1..P4 from ``priority``, falling back to the legacy ``severity``."""
    for candidate in (priority, severity):
        p = candidate.strip().upper()
        if p in ALLOWED_PRIORITIES:
            return p
    return None


def normalize_issue_status(issue_status: str, status: str = "") -> str | None:
    """Return ACTIVE/RESOLVED/IGNORED from ``issue_status``, falling back to ``status``."""
    for candidate in (issue_status, status):
        s = candidate.strip().upper()
        if s in ALLOWED_ISSUE_STATUSES:
            return s
    return None


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def selected_priorities(q: CatalystQuery) -> list[str]:
    """Valid priorities from the primary list, else from the legacy ``severity`` field."""
    primary = _dedupe(p for p in (normalize_priority(v) for v in q.priority) if p)
    if primary:
        return primary
    legacy = normalize_priority(q.severity)
    return [legacy] if legacy else []


def selected_statuses(q: CatalystQuery) -> list[str]:
    """Valid statuses; the dedicated ``issueStatus`` field wins over the ``status`` list."""
    dedicated = normalize_issue_status(q.issue_status)
    if dedicated:
        return [dedicated]
    return _dedupe(s for s in (normalize_issue_status(v) for v in q.status) if s)


def _add_scalar(params: Params, key: str, value: str) -> None:
    if v := value.strip():
        params.append((key, v))


def build_assurance_params(q: CatalystQuery, start_ms: int, end_ms: int, page_size: int, offset: int) -> Params:
    """Build the query string for one page of the assurance issues endpoint."""
    params: Params = [
        ("limit", str(clamp_limit(page_size, *ISSUES_LIMIT))),
        ("offset", str(max(offset, 1))),
    ]

    # Optional time range (ignored if zero)
    if start_ms > 0:
        params.append(("startTime", str(start_ms)))
    if end_ms > 0:
        params.append(("endTime", str(end_ms)))

    _add_scalar(params, "siteId", q.site_id)
    _add_scalar(params, "deviceId", q.device_id)
    _add_scalar(params, "macAddress", q.mac_address)

    if priorities := selected_priorities(q):
        params.append(("priority", ",".join(priorities)))

    if statuses := selected_statuses(q):
        # Wire convention is lower-case
        params.append(("status", ",".join(statuses).lower()))

    ai_driven = parse_boolish(q.ai_driven)
    if ai_driven is not None:
        params.append(("aiDriven", "true" if ai_driven else "false"))

    return params


def build_site_health_params(q: CatalystQuery, page_size: int, offset: int, timestamp_ms: int = 0) -> Params:
    """Build the query string for one page of the site-health endpoint."""
    params: Params = [
        ("limit", str(clamp_limit(page_size, *SITE_HEALTH_LIMIT))),
        ("offset", str(max(offset, 1))),
    ]
    _add_scalar(params, "siteType", q.site_type)
    _add_scalar(params, "parentSiteName", q.parent_site_name)
    _add_scalar(params, "siteName", q.site_name)
    if timestamp_ms > 0:
        params.append(("timestamp", str(timestamp_ms)))
    return params
