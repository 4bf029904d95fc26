"""Counters and error state exposed on the stats endpoint."""

import logging
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from usage_bridge.bridge.models import EventOutcome

logger = logging.getLogger(__name__)


class CacheStatistics(BaseModel):
    """Document store reads and writes."""

    read_success: int = 0
    read_failure: int = 0
    write_success: int = 0
    write_failure: int = 0


class PagingStatistics(BaseModel):
    """Cloud Controller paging."""

    missing_token: int = 0
    page_read_success: int = 0
    page_read_failures: int = 0


class UsageStatistics(BaseModel):
    """Collector reports and per-event loop outcomes."""

    missing_token: int = 0
    report_success: int = 0
    report_conflict: int = 0
    report_business_error: int = 0
    report_failures: int = 0
    loop_success: int = 0
    loop_conflict: int = 0
    loop_skip: int = 0
    loop_failures: int = 0


class CarryOverStatistics(BaseModel):
    """Carry-over ledger lookups and writes."""

    get_success: int = 0
    get_not_found: int = 0
    get_failure: int = 0
    upsert_success: int = 0
    upsert_failure: int = 0
    adjustments: int = 0
    purged: int = 0


class PassStatistics(BaseModel):
    """Polling passes."""

    succeeded: int = 0
    failed: int = 0
    cursor_resets: int = 0
    events_filtered: int = 0
    young_events: int = 0


class BridgeStatistics(BaseModel):
    """All bridge counters."""

    cache: CacheStatistics = Field(default_factory=CacheStatistics)
    paging: PagingStatistics = Field(default_factory=PagingStatistics)
    usage: UsageStatistics = Field(default_factory=UsageStatistics)
    carry_over: CarryOverStatistics = Field(default_factory=CarryOverStatistics)
    passes: PassStatistics = Field(default_factory=PassStatistics)

    def record_event(self, outcome: EventOutcome) -> None:
        """Count the outcome of one processed event."""
        if outcome == EventOutcome.SUCCESS:
            self.usage.loop_success += 1
        elif outcome == EventOutcome.CONFLICT:
            self.usage.loop_conflict += 1
        elif outcome == EventOutcome.SKIPPED:
            self.usage.loop_skip += 1
        else:
            self.usage.loop_failures += 1


class ErrorState(BaseModel):
    """Most recent error and consecutive failure count."""

    missing_token: bool = False
    no_report_ever_happened: bool = True
    consecutive_failures: int = 0
    last_error: str = ""
    last_error_timestamp: str = ""

    def register_error(self, message: str, error: BaseException | None = None) -> None:
        """Record a failure.

        Args:
            message: What the bridge was doing.
            error: The error that occurred.
        """
        self.consecutive_failures += 1
        self.last_error = f"{message}: {error}" if error else message
        self.last_error_timestamp = datetime.now(UTC).isoformat()
        logger.error("%s (consecutive failures: %d)", self.last_error, self.consecutive_failures)

    def register_success(self) -> None:
        """Record a successful delivery."""
        self.consecutive_failures = 0
        self.no_report_ever_happened = False
