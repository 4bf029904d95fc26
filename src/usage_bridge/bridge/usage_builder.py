"""Conversion of usage events to collector usage documents."""

import logging
from typing import Protocol

from pydantic import BaseModel, ValidationError

from usage_bridge.bridge.carryover import CarryOver
from usage_bridge.bridge.checker import AppEventChecker, ServiceEventChecker
from usage_bridge.bridge.errors import BuilderError
from usage_bridge.bridge.models import (
    AppEventEntity,
    AppEventState,
    Measure,
    ServiceEventEntity,
    ServiceEventState,
    UsageDocument,
    UsageEvent,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024
CONTAINER_RESOURCE_ID = "linux-container"
CONTAINER_PLAN_ID = "standard"


class UsageBuilder(Protocol):
    """Builds the usage document of an event."""

    async def build(self, event: UsageEvent) -> UsageDocument | None:
        """Build the usage document, or None if the event is not reported.

        Raises:
            BuilderError: If the event payload is missing or malformed.
        """
        ...


def _entity(event: UsageEvent, model: type[BaseModel]) -> BaseModel:
    if not event.entity:
        raise BuilderError(f"Event {event.id} has no entity")
    try:
        return model.model_validate(event.entity)
    except ValidationError as e:
        raise BuilderError(f"Event {event.id} has a malformed entity", e) from e


def service_measures(state: str) -> list[Measure]:
    created = state == ServiceEventState.CREATED.value
    return [
        Measure(measure="current_instances", quantity=1 if created else 0),
        Measure(measure="previous_instances", quantity=0 if created else 1),
    ]


def app_measures(entity: AppEventEntity) -> list[Measure]:
    started = AppEventState.STARTED.value
    current_memory = current_instances = 0
    if entity.state == started:
        current_memory = entity.memory_in_mb_per_instance * MB
        current_instances = entity.instance_count

    previous_memory = previous_instances = 0
    if entity.previous_state == started:
        previous_memory = entity.previous_memory_in_mb_per_instance * MB
        previous_instances = entity.previous_instance_count

    return [
        Measure(measure="current_instance_memory", quantity=current_memory),
        Measure(measure="current_running_instances", quantity=current_instances),
        Measure(measure="previous_instance_memory", quantity=previous_memory),
        Measure(measure="previous_running_instances", quantity=previous_instances),
    ]


class ServiceUsageBuilder:
    """Usage documents for managed service instance events."""

    def __init__(self, checker: ServiceEventChecker, carry_over: CarryOver) -> None:
        self._checker = checker
        self._carry_over = carry_over

    async def build(self, event: UsageEvent) -> UsageDocument | None:
        entity = _entity(event, ServiceEventEntity)
        if not self._checker.is_supported(event):
            logger.debug(
                "Event %s (%s %s/%s) is not reported",
                event.id,
                entity.state,
                entity.service_label,
                entity.service_plan_name,
            )
            return None

        consumer_id = f"service:{entity.service_instance_guid}"
        usage = UsageDocument(
            start=event.created_at_ms,
            end=event.created_at_ms,
            organization_id=entity.org_guid,
            space_id=entity.space_guid,
            consumer_id=consumer_id,
            resource_id=entity.service_label,
            plan_id=entity.service_plan_name,
            resource_instance_id=(
                f"{consumer_id}:{entity.service_plan_name}:{entity.service_label}"
            ),
            measured_usage=service_measures(entity.state),
        )
        return await self._carry_over.adjust_timestamp(usage, event.id)


class AppUsageBuilder:
    """Usage documents for application container events."""

    def __init__(self, checker: AppEventChecker, carry_over: CarryOver) -> None:
        self._checker = checker
        self._carry_over = carry_over

    async def build(self, event: UsageEvent) -> UsageDocument | None:
        entity = _entity(event, AppEventEntity)
        if not self._checker.is_supported(event):
            logger.debug("Event %s (%s) is not reported", event.id, entity.state)
            return None

        consumer_id = f"app:{entity.app_guid}"
        usage = UsageDocument(
            start=event.created_at_ms,
            end=event.created_at_ms,
            organization_id=entity.org_guid,
            space_id=entity.space_guid,
            consumer_id=consumer_id,
            resource_id=CONTAINER_RESOURCE_ID,
            plan_id=CONTAINER_PLAN_ID,
            resource_instance_id=f"{consumer_id}:{CONTAINER_PLAN_ID}:{CONTAINER_RESOURCE_ID}",
            measured_usage=app_measures(entity),
        )
        return await self._carry_over.adjust_timestamp(usage, event.id)
