"""Tests for paging and event retrieval."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from usage_bridge.bridge.errors import (
    BuilderError,
    CursorInvalidError,
    PagingError,
    RetrievalFailedError,
    TokenAcquisitionError,
)
from usage_bridge.bridge.paging import PagingClient
from usage_bridge.bridge.retriever import (
    EventsClient,
    app_events_path,
    service_events_path,
)
from usage_bridge.bridge.statistics import PagingStatistics, PassStatistics

API_URL = "http://cf.test"


def token_source(token="cf-token"):
    source = MagicMock()
    source.current.return_value = token
    return source


def pages_transport(pages, requests):
    """Serve the given pages, linked by next_url."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        index = int(request.url.params.get("page", "0"))
        body = {"resources": pages[index], "next_url": None}
        if index + 1 < len(pages):
            body["next_url"] = f"/v2/service_usage_events?page={index + 1}"
        return httpx.Response(200, json=body)

    return httpx.MockTransport(handler)


def events_client(transport, clock, orgs=None, bridge_type="services", statistics=None):
    http_client = httpx.AsyncClient(transport=transport)
    paging = PagingClient(API_URL, http_client=http_client)
    return EventsClient(
        paging,
        token_source(),
        bridge_type=bridge_type,
        min_age=60000,
        orgs_to_report=orgs,
        clock=clock,
        statistics=statistics,
    )


class TestEventsPath:
    """Tests for the events URL builders."""

    def test_service_events_without_filters(self):
        """Managed service instance events are requested in ascending order."""
        url = httpx.URL(f"{API_URL}{service_events_path()}")

        assert url.path == "/v2/service_usage_events"
        assert url.params["order-direction"] == "asc"
        assert url.params["results-per-page"] == "50"
        assert url.params.get_list("q") == ["service_instance_type:managed_service_instance"]
        assert "after_guid" not in url.params

    def test_service_events_with_guids_and_cursor(self):
        """Service GUIDs and the cursor are added to the query."""
        url = httpx.URL(f"{API_URL}{service_events_path('event-9', ['g1', 'g2'])}")

        assert url.params.get_list("q") == [
            "service_instance_type:managed_service_instance",
            "service_guid IN g1,g2",
        ]
        assert url.params["after_guid"] == "event-9"

    def test_app_events(self):
        """Application events are requested in ascending order."""
        url = httpx.URL(f"{API_URL}{app_events_path('event-9')}")

        assert url.path == "/v2/app_usage_events"
        assert url.params["order-direction"] == "asc"
        assert url.params["after_guid"] == "event-9"
        assert "q" not in url.params


class TestPagingClient:
    """Tests for PagingClient."""

    @pytest.mark.asyncio
    async def test_follows_next_url(self):
        """Resources of all pages are yielded with a bearer token."""
        requests = []
        transport = pages_transport([[{"id": 1}, {"id": 2}], [{"id": 3}]], requests)
        statistics = PagingStatistics()
        paging = PagingClient(
            API_URL, http_client=httpx.AsyncClient(transport=transport), statistics=statistics
        )

        resources = [r async for r in paging.iter_resources("/v2/services", token_source())]

        assert [r["id"] for r in resources] == [1, 2, 3]
        assert len(requests) == 2
        assert requests[0].headers["Authorization"] == "Bearer cf-token"
        assert statistics.page_read_success == 2

    @pytest.mark.asyncio
    async def test_error_status(self):
        """A non-200 page raises PagingError with status and body."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(500, json={"description": "boom"})
        )
        statistics = PagingStatistics()
        paging = PagingClient(
            API_URL, http_client=httpx.AsyncClient(transport=transport), statistics=statistics
        )

        with pytest.raises(PagingError) as exc_info:
            async for _ in paging.iter_resources("/v2/services", token_source()):
                pass

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == {"description": "boom"}
        assert statistics.page_read_failures == 1

    @pytest.mark.asyncio
    async def test_missing_token(self):
        """A missing token is counted and propagated."""
        source = MagicMock()
        source.current.side_effect = TokenAcquisitionError("no token")
        statistics = PagingStatistics()
        paging = PagingClient(API_URL, http_client=AsyncMock(), statistics=statistics)

        with pytest.raises(TokenAcquisitionError):
            async for _ in paging.iter_resources("/v2/services", source):
                pass

        assert statistics.missing_token == 1


class TestEventRetriever:
    """Tests for EventRetriever."""

    @pytest.mark.asyncio
    async def test_processes_events_in_order(self, service_event, clock):
        """Every eligible event is processed in order, then success is reported."""
        events = [service_event(guid="e1"), service_event(guid="e2"), service_event(guid="e3")]
        transport = pages_transport([events[:2], events[2:]], [])
        retriever = events_client(transport, clock).retriever(after_guid="e0")
        processed = []
        succeeded = AsyncMock()
        failed = AsyncMock()

        async def process(event):
            processed.append(event.id)

        retriever.for_each_event(process)
        retriever.when_succeeded(succeeded)
        retriever.when_failed(failed)
        await retriever.start()

        assert processed == ["e1", "e2", "e3"]
        succeeded.assert_awaited_once()
        failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cursor_in_request(self, clock):
        """The cursor and service GUIDs are sent to the Cloud Controller."""
        requests = []
        transport = pages_transport([[]], requests)
        retriever = events_client(transport, clock).retriever(
            after_guid="e0", resource_guids=["g1"]
        )

        await retriever.start()

        assert requests[0].url.params["after_guid"] == "e0"
        assert "service_guid IN g1" in requests[0].url.params.get_list("q")

    @pytest.mark.asyncio
    async def test_age_boundary(self, service_event, clock):
        """An event exactly min_age old is not processed yet; one ms older is."""
        events = [
            service_event(guid="old", age_ms=60001),
            service_event(guid="boundary", age_ms=60000),
            service_event(guid="new", age_ms=1000),
        ]
        statistics = PassStatistics()
        retriever = events_client(
            pages_transport([events], []), clock, statistics=statistics
        ).retriever()
        processed = []
        succeeded = AsyncMock()

        async def process(event):
            processed.append(event.id)

        retriever.for_each_event(process)
        retriever.when_succeeded(succeeded)
        await retriever.start()

        assert processed == ["old"]
        assert statistics.young_events == 1
        succeeded.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_org_filter(self, service_event, clock):
        """Events of other organizations go to the skip handler."""
        events = [
            service_event(guid="e1", org="org-1"),
            service_event(guid="e2", org="org-2"),
            service_event(guid="e3", org="org-1"),
        ]
        statistics = PassStatistics()
        retriever = events_client(
            pages_transport([events], []), clock, orgs=["org-1"], statistics=statistics
        ).retriever()
        processed = []
        skipped = []

        async def process(event):
            processed.append(event.id)

        async def skip(event):
            skipped.append(event.id)

        retriever.for_each_event(process)
        retriever.for_each_skipped(skip)
        await retriever.start()

        assert processed == ["e1", "e3"]
        assert skipped == ["e2"]
        assert statistics.events_filtered == 1

    @pytest.mark.asyncio
    async def test_cursor_invalid(self, clock):
        """A 400 with code 10005 is reported as an invalid cursor."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                400, json={"code": 10005, "description": "Event not found"}
            )
        )
        retriever = events_client(transport, clock).retriever(after_guid="gone")
        failed = AsyncMock()
        succeeded = AsyncMock()
        retriever.for_each_event(AsyncMock())
        retriever.when_failed(failed)
        retriever.when_succeeded(succeeded)

        await retriever.start()

        error = failed.await_args.args[0]
        assert isinstance(error, CursorInvalidError)
        assert error.cursor == "gone"
        succeeded.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_400_is_retrieval_failure(self, clock):
        """A 400 with another code is a generic retrieval failure."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(400, json={"code": 10001})
        )
        retriever = events_client(transport, clock).retriever(after_guid="e0")
        failed = AsyncMock()
        retriever.when_failed(failed)

        await retriever.start()

        error = failed.await_args.args[0]
        assert isinstance(error, RetrievalFailedError)
        assert error.status_code == 400

    @pytest.mark.asyncio
    async def test_transport_error(self, clock):
        """Transport failures carry their cause."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        retriever = events_client(httpx.MockTransport(handler), clock).retriever()
        failed = AsyncMock()
        retriever.when_failed(failed)

        await retriever.start()

        error = failed.await_args.args[0]
        assert isinstance(error, RetrievalFailedError)
        assert isinstance(error.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_handler_error_aborts_pass(self, service_event, clock):
        """An error raised while processing stops the walk and fails the pass."""
        events = [service_event(guid="e1"), service_event(guid="e2")]
        retriever = events_client(pages_transport([events], []), clock).retriever()
        process = AsyncMock(side_effect=BuilderError("broken"))
        failed = AsyncMock()
        succeeded = AsyncMock()
        retriever.for_each_event(process)
        retriever.when_failed(failed)
        retriever.when_succeeded(succeeded)

        await retriever.start()

        process.assert_awaited_once()
        assert isinstance(failed.await_args.args[0], BuilderError)
        succeeded.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_handler_error(self, service_event, clock):
        """Unclassified errors become retrieval failures."""
        retriever = events_client(
            pages_transport([[service_event()]], []), clock
        ).retriever()
        retriever.for_each_event(AsyncMock(side_effect=KeyError("x")))
        failed = AsyncMock()
        retriever.when_failed(failed)

        await retriever.start()

        error = failed.await_args.args[0]
        assert isinstance(error, RetrievalFailedError)
        assert isinstance(error.cause, KeyError)

    @pytest.mark.asyncio
    async def test_drain_without_handlers(self, service_event, clock):
        """Without handlers the stream is read to the end without errors."""
        requests = []
        events = [service_event(guid="e1", age_ms=10)]
        retriever = events_client(pages_transport([events, events], requests), clock).retriever()

        await retriever.start()

        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_application_events(self, app_event, clock):
        """The applications family reads the app usage events."""
        requests = []
        retriever = events_client(
            pages_transport([[app_event()]], requests), clock, bridge_type="applications"
        ).retriever(after_guid="a0")
        processed = []

        async def process(event):
            processed.append(event.id)

        retriever.for_each_event(process)
        await retriever.start()

        assert requests[0].url.path == "/v2/app_usage_events"
        assert processed == ["app-event-1"]
