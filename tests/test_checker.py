"""Tests for the event checkers."""

import pytest

from usage_bridge.bridge.checker import AppEventChecker, ServiceEventChecker
from usage_bridge.bridge.models import UsageEvent
from usage_bridge.config import TrackedResource

SERVICES = {
    "mongodb": TrackedResource(plans=["small", "medium"]),
    "postgresql": TrackedResource(plans=["v9.4-large"]),
}


class TestServiceEventChecker:
    """Tests for ServiceEventChecker."""

    @pytest.mark.parametrize(
        "state,label,plan,expected",
        [
            ("CREATED", "mongodb", "small", True),
            ("DELETED", "mongodb", "medium", True),
            ("DELETED", "postgresql", "v9.4-large", True),
            ("UPDATED", "mongodb", "small", False),
            ("CREATED", "mongodb", "large", False),
            ("CREATED", "redis", "small", False),
            ("DELETED", "postgresql", "small", False),
        ],
    )
    def test_is_supported(self, service_event, state, label, plan, expected):
        """Only tracked labels and plans in CREATED or DELETED state are supported."""
        event = UsageEvent.model_validate(service_event(state=state, label=label, plan=plan))

        assert ServiceEventChecker(SERVICES).is_supported(event) is expected

    @pytest.mark.parametrize("services", [None, {}])
    def test_without_services(self, service_event, services):
        """Nothing is supported when no services are tracked."""
        event = UsageEvent.model_validate(service_event())

        assert ServiceEventChecker(services).is_supported(event) is False

    def test_without_entity(self, service_event):
        """An event without entity is not supported."""
        raw = service_event()
        raw["entity"] = None
        event = UsageEvent.model_validate(raw)

        assert ServiceEventChecker(SERVICES).is_supported(event) is False


class TestAppEventChecker:
    """Tests for AppEventChecker."""

    @pytest.mark.parametrize(
        "state,expected",
        [("STARTED", True), ("STOPPED", True), ("BUILDPACK_SET", False)],
    )
    def test_is_supported(self, app_event, state, expected):
        """STARTED and STOPPED application events are supported."""
        event = UsageEvent.model_validate(app_event(state=state))

        assert AppEventChecker().is_supported(event) is expected
