"""Retrieval of usage events from the Cloud Controller."""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import aclosing
from typing import Literal
from urllib.parse import quote, urlencode

from usage_bridge.bridge.errors import (
    BridgeError,
    CursorInvalidError,
    PagingError,
    RetrievalFailedError,
)
from usage_bridge.bridge.models import UsageEvent
from usage_bridge.bridge.paging import PagingClient
from usage_bridge.bridge.statistics import PassStatistics
from usage_bridge.bridge.tokens import TokenSource

logger = logging.getLogger(__name__)

RESULTS_PER_PAGE = 50
GUID_NOT_FOUND_CODE = 10005

EventHandler = Callable[[UsageEvent], Awaitable[None]]
SuccessHandler = Callable[[], Awaitable[None]]
FailureHandler = Callable[[BridgeError], Awaitable[None]]


def _events_query(base: dict, after_guid: str | None) -> str:
    if after_guid:
        base["after_guid"] = after_guid
    return urlencode(base, doseq=True, quote_via=quote)


def service_events_path(
    after_guid: str | None = None, service_guids: Sequence[str] | None = None
) -> str:
    """Path of the managed service instance usage events, oldest first."""
    filters = ["service_instance_type:managed_service_instance"]
    if service_guids:
        filters.append(f"service_guid IN {','.join(service_guids)}")
    query = {
        "order-direction": "asc",
        "results-per-page": RESULTS_PER_PAGE,
        "q": filters,
    }
    return f"/v2/service_usage_events?{_events_query(query, after_guid)}"


def app_events_path(after_guid: str | None = None) -> str:
    """Path of the application usage events, oldest first."""
    query = {"order-direction": "asc", "results-per-page": RESULTS_PER_PAGE}
    return f"/v2/app_usage_events?{_events_query(query, after_guid)}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventRetriever:
    """One walk over the usage events stream.

    Register the handlers, then ``await start()``. Each eligible event is
    awaited in the per-event handler before the next one is read, so the
    handler returning is what moves the walk forward. Exactly one of the
    succeeded/failed handlers runs per ``start()``.
    """

    def __init__(
        self,
        paging: PagingClient,
        token_source: TokenSource,
        path: str,
        after_guid: str | None = None,
        min_age: int = 60000,
        orgs_to_report: Sequence[str] | None = None,
        clock: Callable[[], int] | None = None,
        statistics: PassStatistics | None = None,
    ) -> None:
        self._paging = paging
        self._token_source = token_source
        self._path = path
        self._after_guid = after_guid
        self._min_age = min_age
        self._orgs = set(orgs_to_report) if orgs_to_report is not None else None
        self._clock = clock or _now_ms
        self._statistics = statistics or PassStatistics()

        self._process: EventHandler | None = None
        self._skip: EventHandler | None = None
        self._succeeded: SuccessHandler | None = None
        self._failed: FailureHandler | None = None

    @property
    def path(self) -> str:
        return self._path

    def for_each_event(self, fn: EventHandler) -> None:
        self._process = fn

    def for_each_skipped(self, fn: EventHandler) -> None:
        """Handler for events left out by the organization filter."""
        self._skip = fn

    def when_succeeded(self, fn: SuccessHandler) -> None:
        self._succeeded = fn

    def when_failed(self, fn: FailureHandler) -> None:
        self._failed = fn

    def is_old_enough(self, event: UsageEvent) -> bool:
        age = self._clock() - event.created_at_ms
        old_enough = age > self._min_age
        logger.debug(
            "Event %s has age %d, minimum age is %d, old enough: %s",
            event.id,
            age,
            self._min_age,
            old_enough,
        )
        return old_enough

    def is_org_enabled(self, event: UsageEvent) -> bool:
        return self._orgs is None or event.org_id in self._orgs

    async def start(self) -> None:
        """Walk the stream and run the terminal handler."""
        logger.debug("Retrieving usage events from %s", self._path)
        try:
            await self._walk()
        except Exception as e:
            error = self._classify(e)
            if self._failed:
                await self._failed(error)
            else:
                logger.error("Could not process events: %s", error)
            return

        if self._succeeded:
            await self._succeeded()

    async def _walk(self) -> None:
        stream = self._paging.iter_resources(self._path, self._token_source)
        async with aclosing(stream):
            async for resource in stream:
                if self._process is None:
                    continue

                event = UsageEvent.model_validate(resource)
                if not self.is_old_enough(event):
                    # Later events are no older; the cursor must stay before this one
                    self._statistics.young_events += 1
                    logger.debug("Stopping at event %s until it is old enough", event.id)
                    return

                if not self.is_org_enabled(event):
                    self._statistics.events_filtered += 1
                    logger.debug("Event %s of organization %s not reported", event.id, event.org_id)
                    if self._skip:
                        await self._skip(event)
                    continue

                await self._process(event)

    def _classify(self, error: Exception) -> BridgeError:
        if isinstance(error, PagingError):
            body = error.body if isinstance(error.body, dict) else {}
            if error.status_code == 400 and body.get("code") == GUID_NOT_FOUND_CODE:
                return CursorInvalidError(self._after_guid)
            return RetrievalFailedError(
                f"Could not process events: {error}",
                cause=error,
                status_code=error.status_code,
                details=error.body,
            )
        if isinstance(error, BridgeError):
            return error
        return RetrievalFailedError(f"Could not process events: {error}", cause=error)


class EventsClient:
    """Creates retrievers for one usage event family."""

    def __init__(
        self,
        paging: PagingClient,
        token_source: TokenSource,
        bridge_type: Literal["services", "applications"] = "services",
        min_age: int = 60000,
        orgs_to_report: Sequence[str] | None = None,
        clock: Callable[[], int] | None = None,
        statistics: PassStatistics | None = None,
    ) -> None:
        """Initialize the events client.

        Args:
            paging: Paging client for the Cloud Controller.
            token_source: Cloud Controller admin token.
            bridge_type: Event family to read.
            min_age: Minimum event age in milliseconds.
            orgs_to_report: Organization allow-list; all organizations if None.
            clock: Current time in epoch milliseconds.
            statistics: Pass counters updated by the retrievers.
        """
        self._paging = paging
        self._token_source = token_source
        self._bridge_type = bridge_type
        self._min_age = min_age
        self._orgs = orgs_to_report
        self._clock = clock
        self._statistics = statistics or PassStatistics()

    def retriever(
        self,
        after_guid: str | None = None,
        resource_guids: Sequence[str] | None = None,
    ) -> EventRetriever:
        """Create a retriever positioned after the given event."""
        if self._bridge_type == "applications":
            path = app_events_path(after_guid)
        else:
            path = service_events_path(after_guid, resource_guids)
        return EventRetriever(
            self._paging,
            self._token_source,
            path,
            after_guid=after_guid,
            min_age=self._min_age,
            orgs_to_report=self._orgs,
            clock=self._clock,
            statistics=self._statistics,
        )
