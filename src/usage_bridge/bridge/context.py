"""Wiring of the bridge components."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from usage_bridge.bridge.carryover import CarryOver
from usage_bridge.bridge.checker import AppEventChecker, ServiceEventChecker
from usage_bridge.bridge.delay import DelayGenerator
from usage_bridge.bridge.guid_resolver import ServiceGuidResolver
from usage_bridge.bridge.paging import PagingClient
from usage_bridge.bridge.progress import ProgressStore
from usage_bridge.bridge.reporter import UsageReporter
from usage_bridge.bridge.retriever import EventsClient
from usage_bridge.bridge.statistics import BridgeStatistics, ErrorState
from usage_bridge.bridge.store import DocumentStore, InMemoryDocumentStore, SQLDocumentStore
from usage_bridge.bridge.tokens import OAuthTokenSource, TokenSource
from usage_bridge.bridge.usage_builder import AppUsageBuilder, ServiceUsageBuilder, UsageBuilder
from usage_bridge.config import Settings, TrackedResource

logger = logging.getLogger(__name__)

COLLECTOR_SCOPES = {
    "services": ["abacus.usage.write", "abacus.usage.read"],
    "applications": [
        "abacus.usage.linux-container.write",
        "abacus.usage.linux-container.read",
    ],
}


@dataclass
class BridgeContext:
    """Everything a running bridge needs, built once at startup."""

    settings: Settings
    statistics: BridgeStatistics
    errors: ErrorState
    delay: DelayGenerator
    progress: ProgressStore
    carry_over: CarryOver
    events: EventsClient
    builder: UsageBuilder
    reporter: UsageReporter
    cf_token: TokenSource
    collector_token: TokenSource | None = None
    guid_resolver: ServiceGuidResolver | None = None
    services: dict[str, TrackedResource] = field(default_factory=dict)
    http_client: httpx.AsyncClient | None = None

    @property
    def token_sources(self) -> list[OAuthTokenSource]:
        """Token sources that must be started before polling."""
        sources = [self.cf_token, self.collector_token]
        return [s for s in sources if isinstance(s, OAuthTokenSource)]

    def resource_guids(self) -> list[str]:
        """GUIDs of the tracked services known so far."""
        return [resource.guid for resource in self.services.values() if resource.guid]

    async def close(self) -> None:
        """Stop token refreshes and release the HTTP client."""
        for source in self.token_sources:
            await source.stop()
        if self.http_client is not None:
            await self.http_client.aclose()


def build_context(
    settings: Settings,
    store: DocumentStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], int] | None = None,
) -> BridgeContext:
    """Build the bridge components for the configured event family.

    Args:
        settings: Application settings.
        store: Document store; chosen from ``settings.store_backend`` if None.
        http_client: HTTP client shared by all outgoing calls; created if None.
        clock: Current time in epoch milliseconds, for the age filter.

    Returns:
        The bridge context.
    """
    if store is None:
        if settings.store_backend == "memory":
            logger.warning("Using in-memory store; progress is lost on restart")
            store = InMemoryDocumentStore()
        else:
            store = SQLDocumentStore()

    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    statistics = BridgeStatistics()
    services = {
        label: resource.model_copy(deep=True)
        for label, resource in (settings.services or {}).items()
    }

    cf_token = OAuthTokenSource(
        "cf-admin",
        settings.auth_server_url,
        settings.cf_client_id,
        settings.cf_client_secret,
        http_client=http_client,
        timeout=settings.http_timeout_seconds,
    )
    collector_token = None
    if settings.secured:
        collector_token = OAuthTokenSource(
            "collector",
            settings.auth_server_url,
            settings.client_id,
            settings.client_secret,
            scopes=COLLECTOR_SCOPES[settings.bridge_type],
            http_client=http_client,
            timeout=settings.http_timeout_seconds,
        )

    paging = PagingClient(
        settings.cf_api_url,
        http_client=http_client,
        statistics=statistics.paging,
        timeout=settings.http_timeout_seconds,
    )
    carry_over = CarryOver(
        store,
        statistics=statistics.carry_over,
        retention_seconds=settings.carry_over_retention_seconds,
    )

    guid_resolver = None
    if settings.bridge_type == "applications":
        builder = AppUsageBuilder(AppEventChecker(), carry_over)
    else:
        builder = ServiceUsageBuilder(ServiceEventChecker(services), carry_over)
        guid_resolver = ServiceGuidResolver(paging, cf_token)

    return BridgeContext(
        settings=settings,
        statistics=statistics,
        errors=ErrorState(),
        delay=DelayGenerator(settings.min_interval_time, settings.max_interval_time),
        progress=ProgressStore(
            store,
            settings.resolved_progress_document_id,
            default_event_id=settings.last_recorded_guid,
            statistics=statistics.cache,
        ),
        carry_over=carry_over,
        events=EventsClient(
            paging,
            cf_token,
            bridge_type=settings.bridge_type,
            min_age=settings.guid_min_age,
            orgs_to_report=settings.orgs_to_report,
            clock=clock,
            statistics=statistics.passes,
        ),
        builder=builder,
        reporter=UsageReporter(
            settings.collector_url,
            carry_over,
            statistics=statistics.usage,
            http_client=http_client,
            timeout=settings.http_timeout_seconds,
        ),
        cf_token=cf_token,
        collector_token=collector_token,
        guid_resolver=guid_resolver,
        services=services,
        http_client=http_client,
    )
