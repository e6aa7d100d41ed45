"""Dashboard-facing datasource: answers queries, health checks and resource calls.

A single ``Datasource`` is built at process start and shared by every inbound
request. It owns the process-wide ``TokenManager``; everything else (HTTP
client, page state, accumulators) is created per request or per query.
"""

import json
import logging
import time
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import ValidationError

from catalyst_datasource.backend.client import auth_headers, client_for
from catalyst_datasource.backend.enrichment import collect_site_ids, resolve_site_names
from catalyst_datasource.backend.fetcher import PageFetcher, RawRecord
from catalyst_datasource.backend.models import (
    CatalystQuery,
    DataResponse,
    Frame,
    FrameField,
    FrameMeta,
    HealthResult,
    InstanceSettings,
    IssueRow,
    Notice,
    ResourceResponse,
)
from catalyst_datasource.backend.normalize import filter_sites, normalize_issue, site_metric_columns
from catalyst_datasource.backend.params import (
    ALLOWED_ISSUE_STATUSES,
    ALLOWED_PRIORITIES,
    build_assurance_params,
    build_site_health_params,
    selected_priorities,
)
from catalyst_datasource.backend.tokens import TokenManager
from catalyst_datasource.backend.urls import issues_url, site_health_url
from catalyst_datasource.errors import CatalystError, ConfigurationError, FetchCancelledError, UpstreamRequestError
from catalyst_datasource.observability.metrics import QUERIES_TOTAL

logger = logging.getLogger(__name__)

ISSUES_PAGE_SIZE = 25
SITE_HEALTH_PAGE_SIZE = 25
DEFAULT_HARD_LIMIT = 25
DEFAULT_QUERY_TIMEOUT_SECONDS = 120.0

NO_ISSUES_NOTICE = "No issues found for the selected time range/filters"
NO_SITES_NOTICE = "No site health data found for the selected filters"

ISSUE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Issue ID", "id"),
    ("Title", "title"),
    ("Priority", "severity"),
    ("Status", "status"),
    ("Category", "category"),
    ("Device ID", "device"),
    ("MAC", "mac"),
    ("Site Name", "site"),
    ("Rule", "rule"),
    ("Details", "details"),
)


# --- Frame building ---


def _no_data_meta(text: str) -> FrameMeta:
    return FrameMeta(notices=[Notice(severity="info", text=text)])


def issues_frame(ref_id: str, rows: Sequence[IssueRow]) -> Frame:
    """Build the issues table: a Time column followed by the fixed string columns."""
    fields = [
        FrameField(
            name="Time",
            type="time",
            values=[datetime.fromtimestamp(r.time_ms / 1000, tz=UTC) for r in rows],
        )
    ]
    fields.extend(
        FrameField(name=name, type="string", values=[getattr(r, attr) for r in rows]) for name, attr in ISSUE_COLUMNS
    )
    return Frame(name=ref_id, fields=fields, meta=None if rows else _no_data_meta(NO_ISSUES_NOTICE))


def site_health_frame(ref_id: str, sites: Sequence[Mapping[str, Any]], metrics: Sequence[str]) -> Frame:
    """Build the site-health table: site name plus one numeric column per metric."""
    fields = [
        FrameField(
            name="Site Name",
            type="string",
            values=[s.get("siteName") if isinstance(s.get("siteName"), str) else "" for s in sites],
        )
    ]
    fields.extend(
        FrameField(name=metric, type="number", values=values)
        for metric, values in site_metric_columns(sites, metrics).items()
    )
    return Frame(name=ref_id, fields=fields, meta=None if sites else _no_data_meta(NO_SITES_NOTICE))


def _hard_limit(query: CatalystQuery) -> int:
    return query.limit if query.limit is not None and query.limit > 0 else DEFAULT_HARD_LIMIT


class Datasource:
    """Catalyst Center datasource shared across requests."""

    def __init__(
        self,
        tokens: TokenManager | None = None,
        query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    ) -> None:
        self.tokens = tokens or TokenManager()
        self._query_timeout = query_timeout_seconds

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_data(
        self,
        instance: InstanceSettings,
        queries: Sequence[Mapping[str, Any]],
    ) -> dict[str, DataResponse]:
        """Answer every query in a request; each result slot carries its own error."""
        responses: dict[str, DataResponse] = {}
        async with client_for(instance) as client:
            for i, raw in enumerate(queries):
                ref_id = str(raw.get("refId") or f"Q{i}")
                try:
                    query = CatalystQuery.model_validate({**raw, "refId": ref_id})
                except ValidationError as e:
                    QUERIES_TOTAL.labels(query_type="invalid", status="error").inc()
                    responses[ref_id] = DataResponse(error=f"invalid query model: {e}")
                    continue
                responses[ref_id] = await self.run_query(client, instance, query)
        return responses

    async def run_query(
        self,
        client: httpx.AsyncClient,
        instance: InstanceSettings,
        query: CatalystQuery,
    ) -> DataResponse:
        deadline = time.monotonic() + self._query_timeout
        try:
            if query.query_type == "siteHealth":
                response = await self._site_health(client, instance, query, deadline)
            else:
                response = await self._alerts(client, instance, query, deadline)
        except CatalystError as e:
            logger.warning("Query %s (%s) failed: %s", query.ref_id, query.query_type, e)
            QUERIES_TOTAL.labels(query_type=query.query_type, status="error").inc()
            return DataResponse(error=str(e))

        QUERIES_TOTAL.labels(query_type=query.query_type, status="error" if response.error else "success").inc()
        return response

    async def _fetch(
        self,
        fetcher: PageFetcher,
        url: str,
        query: CatalystQuery,
        page_size: int,
        deadline: float,
    ) -> tuple[list[RawRecord], str | None]:
        start_ms, end_ms = query.time_range.from_ms, query.time_range.to_ms

        def page_params(limit: int, offset: int) -> list[tuple[str, str]]:
            if query.query_type == "siteHealth":
                return build_site_health_params(query, limit, offset, end_ms)
            return build_assurance_params(query, start_ms, end_ms, limit, offset)

        try:
            records = await fetcher.fetch_all(url, page_params, _hard_limit(query), page_size, deadline)
        except FetchCancelledError as e:
            logger.warning("Query %s cancelled: %s", query.ref_id, e)
            return e.records, str(e)
        return records, None

    async def _alerts(
        self,
        client: httpx.AsyncClient,
        instance: InstanceSettings,
        query: CatalystQuery,
        deadline: float,
    ) -> DataResponse:
        url = issues_url(instance.base_url)
        fetcher = PageFetcher(client, self.tokens, instance, endpoint="issues")
        records, error = await self._fetch(fetcher, url, query, ISSUES_PAGE_SIZE, deadline)

        site_names: dict[str, str] = {}
        if query.enrich and records and error is None:
            site_names = await resolve_site_names(client, self.tokens, instance, collect_site_ids(records))

        start_ms = query.time_range.from_ms
        rows = [normalize_issue(r, start_ms, site_names) for r in records]

        # The API does not reliably OR multiple priorities server-side.
        if priorities := selected_priorities(query):
            rows = [r for r in rows if r.severity.strip().upper() in priorities]

        logger.info("Query %s returned %d issue row(s) from %d record(s)", query.ref_id, len(rows), len(records))
        return DataResponse(frames=[issues_frame(query.ref_id, rows)], error=error)

    async def _site_health(
        self,
        client: httpx.AsyncClient,
        instance: InstanceSettings,
        query: CatalystQuery,
        deadline: float,
    ) -> DataResponse:
        url = site_health_url(instance.base_url)
        fetcher = PageFetcher(client, self.tokens, instance, endpoint="site-health")
        records, error = await self._fetch(fetcher, url, query, SITE_HEALTH_PAGE_SIZE, deadline)
        sites = filter_sites(records, query.parent_site_name, query.site_name)
        logger.info("Query %s returned %d site(s) from %d record(s)", query.ref_id, len(sites), len(records))
        return DataResponse(frames=[site_health_frame(query.ref_id, sites, query.metric)], error=error)

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    async def check_health(self, instance: InstanceSettings) -> HealthResult:
        """Verify that a token can be obtained and the issues endpoint answers."""
        try:
            url = issues_url(instance.base_url)
        except ConfigurationError as e:
            return HealthResult(status="error", message=f"invalid base URL: {e}")

        async with client_for(instance) as client:
            try:
                token = await self.tokens.get_token(client, instance)
            except CatalystError as e:
                return HealthResult(status="error", message=f"token: {e}")

            try:
                response = await client.get(url, params={"limit": "1"}, headers=auth_headers(token))
            except httpx.HTTPError as e:
                return HealthResult(status="error", message=f"issues probe failed: {e}")

        if response.is_success:
            return HealthResult(status="ok", message="Successfully connected to Catalyst Center (issues)")
        return HealthResult(
            status="error",
            message=f"issues probe HTTP {response.status_code}: {response.text[:500]}",
        )

    # ------------------------------------------------------------------
    # Resource calls (template variables)
    # ------------------------------------------------------------------

    async def call_resource(self, instance: InstanceSettings, path: str, raw_query: str = "") -> ResourceResponse:
        """Serve resource paths used by the dashboard's variable editor."""
        json_headers = {"Content-Type": "application/json"}
        if path == "priorities":
            return ResourceResponse(status=200, body=json.dumps(list(ALLOWED_PRIORITIES)).encode(), headers=json_headers)
        if path == "issueStatuses":
            return ResourceResponse(
                status=200, body=json.dumps(list(ALLOWED_ISSUE_STATUSES)).encode(), headers=json_headers
            )
        if path != "issues":
            return ResourceResponse(status=404, body=b"not found")

        try:
            url = issues_url(instance.base_url)
        except ConfigurationError:
            return ResourceResponse(status=400, body=b"bad baseUrl")

        params = list(httpx.QueryParams(raw_query.lstrip("?")).multi_items())
        async with client_for(instance) as client:
            fetcher = PageFetcher(client, self.tokens, instance, endpoint="issues")
            try:
                response = await fetcher.request_with_refresh(url, params)
            except UpstreamRequestError as e:
                return ResourceResponse(status=502, body=f"request failed: {e}".encode())
            except CatalystError as e:
                return ResourceResponse(status=401, body=f"token: {e}".encode())

        return ResourceResponse(status=response.status_code, body=response.content, headers=json_headers)
