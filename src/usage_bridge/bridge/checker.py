"""Decide which usage events the bridge reports."""

from collections.abc import Mapping

from usage_bridge.bridge.models import AppEventState, ServiceEventState, UsageEvent
from usage_bridge.config import TrackedResource

SUPPORTED_SERVICE_STATES = frozenset(
    {ServiceEventState.CREATED.value, ServiceEventState.DELETED.value}
)
SUPPORTED_APP_STATES = frozenset({AppEventState.STARTED.value, AppEventState.STOPPED.value})


class ServiceEventChecker:
    """Supported service events: tracked label, tracked plan, CREATED or DELETED."""

    def __init__(self, services: Mapping[str, TrackedResource] | None) -> None:
        self._services = services

    def is_supported(self, event: UsageEvent) -> bool:
        entity = event.entity or {}
        if entity.get("state") not in SUPPORTED_SERVICE_STATES:
            return False
        if not self._services:
            return False
        resource = self._services.get(entity.get("service_label"))
        if resource is None:
            return False
        return entity.get("service_plan_name") in resource.plans


class AppEventChecker:
    """Supported application events: STARTED or STOPPED."""

    def is_supported(self, event: UsageEvent) -> bool:
        return event.state in SUPPORTED_APP_STATES
