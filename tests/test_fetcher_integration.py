"""Integration tests for the paginated fetch loop with mocked HTTP responses."""

import time

import httpx
import pytest
import respx

from catalyst_datasource.backend.fetcher import PageFetcher
from catalyst_datasource.backend.models import CatalystQuery, InstanceSettings
from catalyst_datasource.backend.params import build_assurance_params
from catalyst_datasource.backend.tokens import TokenManager
from catalyst_datasource.errors import (
    AuthEndpointError,
    FetchCancelledError,
    UpstreamRequestError,
    UpstreamStatusError,
)
from tests.helpers import ISSUES_URL, TOKEN_URL, FakeClock, issue

QUERY = CatalystQuery()


def _params(limit: int, offset: int) -> list[tuple[str, str]]:
    return build_assurance_params(QUERY, 0, 0, limit, offset)


def _page(start: int, count: int) -> httpx.Response:
    return httpx.Response(200, json={"response": [issue(n) for n in range(start, start + count)]})


def _login(token: str = "tok-1") -> httpx.Response:
    return httpx.Response(200, headers={"X-Auth-Token": token})


def _sent(route: respx.Route, i: int) -> dict[str, str]:
    return dict(route.calls[i].request.url.params)


@pytest.mark.integration
class TestPagination:
    @respx.mock
    async def test_cap_reached_on_short_second_page(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        route = respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), _page(25, 5)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=30, page_size=25)

        assert len(records) == 30
        assert route.call_count == 2
        assert _sent(route, 0)["limit"] == "25"
        assert _sent(route, 0)["offset"] == "1"
        assert _sent(route, 1)["limit"] == "5"
        assert _sent(route, 1)["offset"] == "26"

    @respx.mock
    async def test_short_page_stops_pagination(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        route = respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), _page(25, 10)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=100, page_size=25)

        assert len(records) == 35
        assert route.call_count == 2

    @respx.mock
    async def test_empty_page_stops(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        route = respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), httpx.Response(200, json={"response": []})])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=100, page_size=25)

        assert len(records) == 25
        assert route.call_count == 2

    @respx.mock
    async def test_never_exceeds_cap(self, instance: InstanceSettings, clock: FakeClock) -> None:
        # Upstream ignores the requested limit and sends full pages.
        respx.post(TOKEN_URL).mock(return_value=_login())
        respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), _page(25, 25)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=30, page_size=25)

        assert len(records) == 30

    @respx.mock
    async def test_bare_array_body(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        respx.get(ISSUES_URL).mock(return_value=httpx.Response(200, json=[issue(1), issue(2)]))

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)

        assert [r["issueId"] for r in records] == ["issue-1", "issue-2"]

    @respx.mock
    async def test_token_reused_across_pages(self, instance: InstanceSettings, clock: FakeClock) -> None:
        login = respx.post(TOKEN_URL).mock(return_value=_login("tok-xyz"))
        route = respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), _page(25, 1)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=100, page_size=25)

        assert login.call_count == 1
        assert all(call.request.headers["x-auth-token"] == "tok-xyz" for call in route.calls)

    async def test_zero_cap_makes_no_request(self, instance: InstanceSettings, clock: FakeClock) -> None:
        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            assert await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=0, page_size=25) == []


@pytest.mark.integration
class TestUnauthorizedRetry:
    @respx.mock
    async def test_401_refreshes_token_and_retries_same_offset(
        self, instance: InstanceSettings, clock: FakeClock
    ) -> None:
        login = respx.post(TOKEN_URL).mock(side_effect=[_login("stale"), _login("fresh")])
        route = respx.get(ISSUES_URL).mock(side_effect=[httpx.Response(401, text="expired"), _page(0, 3)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)

        assert len(records) == 3
        assert login.call_count == 2
        assert route.call_count == 2
        assert _sent(route, 0) == _sent(route, 1)
        assert route.calls[1].request.headers["x-auth-token"] == "fresh"

    @respx.mock
    async def test_403_also_retried(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(side_effect=[_login("a"), _login("b")])
        respx.get(ISSUES_URL).mock(side_effect=[httpx.Response(403), _page(0, 1)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            assert len(await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)) == 1

    @respx.mock
    async def test_second_401_is_fatal(self, instance: InstanceSettings, clock: FakeClock) -> None:
        login = respx.post(TOKEN_URL).mock(side_effect=[_login("a"), _login("b")])
        route = respx.get(ISSUES_URL).mock(side_effect=[httpx.Response(401), httpx.Response(401, text="nope")])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(UpstreamStatusError) as exc_info:
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)

        assert exc_info.value.status_code == 401
        assert login.call_count == 2
        assert route.call_count == 2

    @respx.mock
    async def test_refresh_login_failure_is_fatal(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(side_effect=[_login("a"), httpx.Response(500)])
        respx.get(ISSUES_URL).mock(return_value=httpx.Response(401))

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(AuthEndpointError):
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)

    @respx.mock
    async def test_retry_on_later_page_keeps_offset(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(side_effect=[_login("a"), _login("b")])
        route = respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), httpx.Response(401), _page(25, 2)])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            records = await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=100, page_size=25)

        assert len(records) == 27
        assert _sent(route, 1)["offset"] == "26"
        assert _sent(route, 2)["offset"] == "26"


@pytest.mark.integration
class TestFailures:
    @respx.mock
    async def test_server_error_includes_body(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        respx.get(ISSUES_URL).mock(return_value=httpx.Response(500, text="internal kaboom"))

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(UpstreamStatusError, match="internal kaboom") as exc_info:
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)

        assert exc_info.value.status_code == 500

    @respx.mock
    async def test_transport_failure(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        respx.get(ISSUES_URL).mock(side_effect=httpx.ReadTimeout("Read timed out"))

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(UpstreamRequestError, match="timed out"):
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25)

    @respx.mock
    async def test_failure_on_second_page_discards_partial(
        self, instance: InstanceSettings, clock: FakeClock
    ) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        respx.get(ISSUES_URL).mock(side_effect=[_page(0, 25), httpx.Response(502, text="bad gateway")])

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(UpstreamStatusError):
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=100, page_size=25)

    async def test_expired_deadline_returns_partial_records(
        self, instance: InstanceSettings, clock: FakeClock
    ) -> None:
        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(FetchCancelledError) as exc_info:
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=25, page_size=25, deadline=time.monotonic() - 1)

        assert exc_info.value.records == []

    @respx.mock
    async def test_deadline_checked_between_pages(self, instance: InstanceSettings, clock: FakeClock) -> None:
        respx.post(TOKEN_URL).mock(return_value=_login())
        deadline = time.monotonic() + 0.05

        def slow_first_page(request: httpx.Request) -> httpx.Response:
            time.sleep(0.1)
            return _page(0, 25)

        route = respx.get(ISSUES_URL).mock(side_effect=slow_first_page)

        async with httpx.AsyncClient() as client:
            fetcher = PageFetcher(client, TokenManager(clock=clock), instance)
            with pytest.raises(FetchCancelledError) as exc_info:
                await fetcher.fetch_all(ISSUES_URL, _params, hard_cap=100, page_size=25, deadline=deadline)

        assert route.call_count == 1
        assert len(exc_info.value.records) == 25
