"""Data models for usage events, usage documents and bridge progress."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceEventState(str, Enum):
    """States of managed service instance usage events."""

    CREATED = "CREATED"
    DELETED = "DELETED"
    UPDATED = "UPDATED"


class AppEventState(str, Enum):
    """States of application usage events."""

    STARTED = "STARTED"
    STOPPED = "STOPPED"
    BUILDPACK_SET = "BUILDPACK_SET"


class EventMetadata(BaseModel):
    """Metadata part of a Cloud Controller usage event."""

    guid: str = Field(..., description="Event GUID, used as paging cursor")
    created_at: datetime = Field(..., description="When the platform recorded the event")
    url: str | None = Field(None, description="Event URL")

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class UsageEvent(BaseModel):
    """A usage event as returned by the Cloud Controller.

    The entity is kept as a raw mapping; the usage builders validate the
    fields they need for their event family.
    """

    metadata: EventMetadata
    entity: dict[str, Any] | None = None

    @property
    def id(self) -> str:
        return self.metadata.guid

    @property
    def created_at(self) -> datetime:
        return self.metadata.created_at

    @property
    def created_at_ms(self) -> int:
        """Creation time in epoch milliseconds."""
        return round(self.metadata.created_at.timestamp() * 1000)

    @property
    def org_id(self) -> str | None:
        return (self.entity or {}).get("org_guid")

    @property
    def state(self) -> str | None:
        return (self.entity or {}).get("state")


class ServiceEventEntity(BaseModel):
    """Entity of a managed service instance usage event."""

    model_config = ConfigDict(extra="allow")

    state: str
    org_guid: str
    space_guid: str
    service_instance_guid: str
    service_label: str
    service_plan_name: str
    service_guid: str | None = None
    service_instance_type: str | None = None


class AppEventEntity(BaseModel):
    """Entity of an application usage event."""

    model_config = ConfigDict(extra="allow")

    state: str
    org_guid: str
    space_guid: str
    app_guid: str
    previous_state: str | None = None
    memory_in_mb_per_instance: int = 0
    previous_memory_in_mb_per_instance: int = 0
    instance_count: int = 0
    previous_instance_count: int = 0


class Measure(BaseModel):
    """A single measured quantity of a usage document."""

    measure: str = Field(..., description="Measure name")
    quantity: int | float = Field(..., description="Measured quantity")


class UsageDocument(BaseModel):
    """Usage document submitted to the collector."""

    start: int = Field(..., description="Usage start (epoch ms)")
    end: int = Field(..., description="Usage end (epoch ms)")
    organization_id: str = Field(..., description="Organization GUID")
    space_id: str = Field(..., description="Space GUID")
    consumer_id: str = Field(..., description="Consumer (instance or app) ID")
    resource_id: str = Field(..., description="Resource ID (service label)")
    plan_id: str = Field(..., description="Plan ID")
    resource_instance_id: str = Field(..., description="Resource instance ID")
    measured_usage: list[Measure] = Field(default_factory=list, description="Measures")


class Checkpoint(BaseModel):
    """Position of the bridge in the usage events stream."""

    last_event_id: str | None = Field(None, description="GUID of the last processed event")
    last_event_timestamp: str | None = Field(
        None, description="Creation time of the last processed event"
    )

    @classmethod
    def of(cls, event: UsageEvent) -> "Checkpoint":
        """Checkpoint positioned right after the given event."""
        return cls(
            last_event_id=event.id,
            last_event_timestamp=event.created_at.isoformat(),
        )


class ReportOutcome(str, Enum):
    """Classification of a collector response."""

    CREATED = "created"
    CONFLICT = "conflict"
    ERROR = "error"


class ReportResult(BaseModel):
    """Result of a usage report attempt."""

    outcome: ReportOutcome = Field(..., description="How the collector answered")
    status_code: int | None = Field(None, description="HTTP status, if any")
    error_message: str | None = Field(None, description="Error if failed")
    location: str | None = Field(None, description="Location of the created usage")
    reported_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When report was attempted"
    )

    @property
    def is_delivered(self) -> bool:
        """Whether the collector holds this usage (created now or before)."""
        return self.outcome in (ReportOutcome.CREATED, ReportOutcome.CONFLICT)


class EventOutcome(str, Enum):
    """What happened to one event of a polling pass."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    SKIPPED = "skipped"
    FAILED = "failed"
