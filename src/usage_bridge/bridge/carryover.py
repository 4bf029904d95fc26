"""Carry-over ledger that keeps usage documents from colliding.

The collector identifies a usage document by its natural key and the second
it starts in. Two events of the same instance recorded within one second
would therefore overwrite each other, so a document whose second is already
taken by another event is moved forward one second at a time until it finds
a free one. The ledger remembers which event owns which second, which makes
replaying an event land on the same second again.
"""

import logging
from datetime import UTC, datetime, timedelta

from usage_bridge.bridge.errors import BuilderError, StoreError
from usage_bridge.bridge.models import UsageDocument
from usage_bridge.bridge.statistics import CarryOverStatistics
from usage_bridge.bridge.store import DocumentStore, StoredDocument

logger = logging.getLogger(__name__)

KEY_PREFIX = "t/"
SECOND_MS = 1000
MAX_ADJUSTMENTS = 1000


def carry_over_key(usage: UsageDocument) -> str:
    """Ledger key of the second bucket a usage document starts in."""
    second = usage.start // SECOND_MS
    return (
        f"{KEY_PREFIX}{second:016d}/k/{usage.organization_id}/{usage.space_id}/"
        f"{usage.consumer_id}/{usage.resource_id}/{usage.plan_id}/"
        f"{usage.resource_instance_id}"
    )


class CarryOver:
    """Reads and writes carry-over ledger entries."""

    def __init__(
        self,
        store: DocumentStore,
        statistics: CarryOverStatistics | None = None,
        retention_seconds: int = 86400,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: Document store holding the entries.
            statistics: Ledger counters.
            retention_seconds: Age after which entries are purged.
        """
        self._store = store
        self._statistics = statistics or CarryOverStatistics()
        self._retention = timedelta(seconds=retention_seconds)

    async def _lookup(self, key: str) -> StoredDocument | None:
        try:
            document = await self._store.get(key)
        except StoreError:
            self._statistics.get_failure += 1
            logger.error("Failed to read carry-over entry %s", key)
            raise
        if document is None:
            self._statistics.get_not_found += 1
        else:
            self._statistics.get_success += 1
        return document

    async def adjust_timestamp(self, usage: UsageDocument, event_id: str) -> UsageDocument:
        """Move a usage document to the first second it may occupy.

        Returns:
            The usage document, shifted forward if its second was taken.

        Raises:
            StoreError: If the ledger cannot be read.
            BuilderError: If no free second is found.
        """
        adjusted = usage
        for _ in range(MAX_ADJUSTMENTS):
            document = await self._lookup(carry_over_key(adjusted))
            if document is None or document.body.get("event_id") == event_id:
                if adjusted is not usage:
                    logger.debug(
                        "Moved usage of event %s from %d to %d",
                        event_id,
                        usage.start,
                        adjusted.start,
                    )
                return adjusted

            self._statistics.adjustments += 1
            adjusted = adjusted.model_copy(
                update={
                    "start": adjusted.start + SECOND_MS,
                    "end": adjusted.end + SECOND_MS,
                }
            )

        raise BuilderError(
            f"No free second found for usage of event {event_id} "
            f"after {MAX_ADJUSTMENTS} adjustments"
        )

    async def commit(self, usage: UsageDocument, event_id: str) -> None:
        """Record that ``event_id`` owns the second of ``usage``.

        Raises:
            StoreError: If the entry cannot be written.
        """
        key = carry_over_key(usage)
        body = {"event_id": event_id, "start": usage.start, "end": usage.end}
        existing = await self._lookup(key)
        try:
            await self._store.put(key, body, existing.revision if existing else None)
        except StoreError:
            self._statistics.upsert_failure += 1
            logger.error("Failed to write carry-over entry %s", key)
            raise
        self._statistics.upsert_success += 1

    async def purge(self, now: datetime | None = None) -> int:
        """Delete entries older than the retention window.

        Returns:
            Number of purged entries.
        """
        before = (now or datetime.now(UTC)) - self._retention
        purged = await self._store.purge(KEY_PREFIX, before)
        self._statistics.purged += purged
        if purged:
            logger.info("Purged %d carry-over entries written before %s", purged, before)
        return purged
