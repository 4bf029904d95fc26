"""Persistent checkpoint of the bridge position in the events stream."""

import logging

from usage_bridge.bridge.errors import StoreError
from usage_bridge.bridge.models import Checkpoint
from usage_bridge.bridge.statistics import CacheStatistics
from usage_bridge.bridge.store import DocumentStore

logger = logging.getLogger(__name__)


class ProgressStore:
    """Reads and writes the checkpoint document.

    The store remembers the revision it last observed and presents it on
    every write, so a concurrent writer makes the write fail instead of being
    silently overwritten. Writes must therefore be sequential.
    """

    def __init__(
        self,
        store: DocumentStore,
        document_id: str,
        default_event_id: str | None = None,
        statistics: CacheStatistics | None = None,
    ) -> None:
        """Initialize the progress store.

        Args:
            store: Document store holding the checkpoint.
            document_id: Fixed ID of the checkpoint document.
            default_event_id: Event GUID to start from when nothing is stored.
            statistics: Counters for store reads and writes.
        """
        self._store = store
        self._document_id = document_id
        self._default = Checkpoint(last_event_id=default_event_id)
        self._statistics = statistics or CacheStatistics()
        self._revision: str | None = None
        self._current = self._default

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def current(self) -> Checkpoint:
        """The last checkpoint read or written."""
        return self._current

    async def read(self) -> Checkpoint:
        """Load the checkpoint from the store.

        Returns:
            The stored checkpoint, or the configured default if none exists.

        Raises:
            StoreError: If the store cannot be read.
        """
        logger.debug("Reading checkpoint %s", self._document_id)
        try:
            document = await self._store.get(self._document_id)
        except StoreError:
            self._statistics.read_failure += 1
            logger.error("Failed to read checkpoint %s", self._document_id)
            raise
        self._statistics.read_success += 1

        if document is None:
            logger.info(
                "No checkpoint %s stored, starting from %s",
                self._document_id,
                self._default.last_event_id or "the beginning of the stream",
            )
            self._current = self._default
            return self._current

        self._revision = document.revision
        self._current = Checkpoint(
            last_event_id=document.body.get("last_event_id"),
            last_event_timestamp=document.body.get("last_event_timestamp"),
        )
        logger.info("Loaded checkpoint %s: %s", self._document_id, self._current.last_event_id)
        return self._current

    async def write(self, checkpoint: Checkpoint) -> None:
        """Persist a checkpoint.

        The in-memory checkpoint is updated even if the write fails; the
        failure is propagated so the pass stops.

        Raises:
            StoreWriteConflictError: If another writer changed the document.
            StoreError: If the store cannot be written.
        """
        self._current = checkpoint
        try:
            self._revision = await self._store.put(
                self._document_id, checkpoint.model_dump(), self._revision
            )
        except StoreError as e:
            self._statistics.write_failure += 1
            logger.error("Failed to write checkpoint %s: %s", self._document_id, e)
            raise
        self._statistics.write_success += 1
        logger.debug("Checkpoint %s now at %s", self._document_id, checkpoint.last_event_id)

    async def clear(self) -> None:
        """Reset the checkpoint to the beginning of the stream."""
        logger.warning("Clearing checkpoint %s", self._document_id)
        await self.write(Checkpoint())
