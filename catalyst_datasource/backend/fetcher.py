"""Page-by-page fetch loop against Catalyst Center list endpoints.

Pages are requested strictly in increasing offset order, one at a time: each
page's size decides whether another request is needed. An unauthorized page
response invalidates the cached token and the same page is retried exactly
once with a fresh one.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx

from catalyst_datasource.backend.client import auth_headers
from catalyst_datasource.backend.models import InstanceSettings
from catalyst_datasource.backend.params import Params
from catalyst_datasource.backend.tokens import TokenManager
from catalyst_datasource.errors import (
    CatalystError,
    FetchCancelledError,
    UpstreamRequestError,
    UpstreamStatusError,
)
from catalyst_datasource.observability.metrics import (
    PAGES_FETCHED,
    TOKEN_INVALIDATIONS,
    UPSTREAM_REQUEST_DURATION,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED_STATUSES = (401, 403)

RawRecord = dict[str, Any]


class FetchState(Enum):
    REQUESTING = "requesting"
    RETRYING = "retrying"
    ACCUMULATING = "accumulating"
    DONE = "done"
    FAILED = "failed"


def extract_records(response: httpx.Response) -> list[RawRecord]:
    """Return the records of a list response.

    Accepts the ``{"response": [...]}`` envelope and, when that is missing or
    empty, a bare JSON array. Undecodable bodies yield no records.
    """
    try:
        body = response.json()
    except ValueError:
        logger.warning("Ignoring undecodable list response body (%d bytes)", len(response.content))
        return []
    if isinstance(body, dict):
        items = body.get("response")
        if isinstance(items, list) and items:
            return [item for item in items if isinstance(item, dict)]
        return []
    if isinstance(body, list):
        return [item for item in body if isinstance(item, dict)]
    return []


class PageFetcher:
    """Drives the paginated fetch for one query against one instance."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenManager,
        instance: InstanceSettings,
        endpoint: str = "issues",
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._instance = instance
        self._endpoint = endpoint

    async def _send(self, url: str, params: Params, token: str) -> httpx.Response:
        start = time.monotonic()
        try:
            return await self._client.get(url, params=params, headers=auth_headers(token))
        except httpx.HTTPError as e:
            raise UpstreamRequestError(f"{self._endpoint} request failed: {e}") from e
        finally:
            UPSTREAM_REQUEST_DURATION.labels(endpoint=self._endpoint).observe(time.monotonic() - start)

    async def _refresh_token(self) -> str:
        logger.warning("Unauthorized response from %s; refreshing token and retrying", self._endpoint)
        TOKEN_INVALIDATIONS.inc()
        self._tokens.invalidate(self._instance.uid)
        return await self._tokens.get_token(self._client, self._instance)

    async def request_with_refresh(self, url: str, params: Params) -> httpx.Response:
        """Issue one GET, retrying once with a fresh token on 401/403.

        The response is returned whatever its final status; only transport
        failures raise.
        """
        token = await self._tokens.get_token(self._client, self._instance)
        response = await self._send(url, params, token)
        if response.status_code in UNAUTHORIZED_STATUSES:
            token = await self._refresh_token()
            response = await self._send(url, params, token)
        return response

    async def fetch_all(
        self,
        list_url: str,
        build_params: Callable[[int, int], Params],
        hard_cap: int,
        page_size: int,
        deadline: float | None = None,
    ) -> list[RawRecord]:
        """Fetch pages until ``hard_cap`` records are collected or the data runs out.

        ``build_params(limit, offset)`` produces the query string of one page.
        ``deadline`` is a ``time.monotonic()`` instant checked between pages.
        """
        records: list[RawRecord] = []
        if hard_cap <= 0:
            return records
        offset = 1
        limit = 0
        params: Params = []
        response: httpx.Response | None = None
        failure: CatalystError | None = None
        state = FetchState.REQUESTING

        while state not in (FetchState.DONE, FetchState.FAILED):
            if state is FetchState.REQUESTING:
                if deadline is not None and time.monotonic() >= deadline:
                    raise FetchCancelledError(records[:hard_cap])
                limit = min(page_size, hard_cap - len(records))
                params = build_params(limit, offset)
                try:
                    token = await self._tokens.get_token(self._client, self._instance)
                    response = await self._send(list_url, params, token)
                except CatalystError as e:
                    failure, state = e, FetchState.FAILED
                    continue
                if response.status_code in UNAUTHORIZED_STATUSES:
                    state = FetchState.RETRYING
                elif response.is_success:
                    state = FetchState.ACCUMULATING
                else:
                    failure = UpstreamStatusError(self._endpoint, response.status_code, response.text)
                    state = FetchState.FAILED

            elif state is FetchState.RETRYING:
                try:
                    token = await self._refresh_token()
                    response = await self._send(list_url, params, token)
                except CatalystError as e:
                    failure, state = e, FetchState.FAILED
                    continue
                if response.is_success:
                    state = FetchState.ACCUMULATING
                else:
                    failure = UpstreamStatusError(self._endpoint, response.status_code, response.text)
                    state = FetchState.FAILED

            elif state is FetchState.ACCUMULATING:
                PAGES_FETCHED.labels(endpoint=self._endpoint).inc()
                page = extract_records(response) if response is not None else []
                logger.debug("%s page at offset %d returned %d record(s)", self._endpoint, offset, len(page))
                if not page:
                    state = FetchState.DONE
                    continue
                records.extend(page)
                if len(records) >= hard_cap or len(page) < limit:
                    state = FetchState.DONE
                else:
                    offset += limit
                    state = FetchState.REQUESTING

        if failure is not None:
            raise failure
        return records[:hard_cap]
