"""Revisioned document stores for checkpoint and carry-over documents."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from usage_bridge.bridge.errors import StoreError, StoreWriteConflictError
from usage_bridge.db import BridgeDocumentModel, get_session

logger = logging.getLogger(__name__)


@dataclass
class StoredDocument:
    """A document together with its current revision."""

    id: str
    revision: str
    body: dict[str, Any]
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def _next_revision(revision: str | None) -> str:
    generation = int(revision.split("-", 1)[0]) if revision else 0
    return f"{generation + 1}-{uuid4().hex}"


class DocumentStore(Protocol):
    """Key/value store with optimistic concurrency on writes."""

    async def get(self, document_id: str) -> StoredDocument | None:
        """Get a document, or None if it does not exist."""
        ...

    async def put(
        self, document_id: str, body: dict[str, Any], revision: str | None = None
    ) -> str:
        """Create or overwrite a document.

        A new document is created when ``revision`` is None; an existing one
        is only overwritten when ``revision`` matches its current revision.

        Returns:
            The new revision.

        Raises:
            StoreWriteConflictError: If the revision is stale.
            StoreError: If the store is unavailable.
        """
        ...

    async def purge(self, prefix: str, before: datetime) -> int:
        """Delete documents under ``prefix`` last written before ``before``."""
        ...


class InMemoryDocumentStore:
    """Document store kept in process memory.

    Suitable for development and tests; progress is lost on restart.
    """

    def __init__(self) -> None:
        self._documents: dict[str, StoredDocument] = {}

    async def get(self, document_id: str) -> StoredDocument | None:
        document = self._documents.get(document_id)
        if document is None:
            return None
        return StoredDocument(
            id=document.id,
            revision=document.revision,
            body=dict(document.body),
            updated_at=document.updated_at,
        )

    async def put(
        self, document_id: str, body: dict[str, Any], revision: str | None = None
    ) -> str:
        existing = self._documents.get(document_id)
        current = existing.revision if existing else None
        if current != revision:
            raise StoreWriteConflictError(document_id, revision)

        new_revision = _next_revision(revision)
        self._documents[document_id] = StoredDocument(
            id=document_id, revision=new_revision, body=dict(body)
        )
        return new_revision

    async def purge(self, prefix: str, before: datetime) -> int:
        stale = [
            key
            for key, document in self._documents.items()
            if key.startswith(prefix) and document.updated_at < before
        ]
        for key in stale:
            del self._documents[key]
        return len(stale)


class SQLDocumentStore:
    """Document store backed by the ``bridge_documents`` table."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Session factory (uses the global one if not provided).
        """
        self._session_factory = session_factory

    async def get(self, document_id: str) -> StoredDocument | None:
        try:
            async with get_session(self._session_factory) as session:
                result = await session.execute(
                    select(BridgeDocumentModel).where(
                        BridgeDocumentModel.id == document_id
                    )
                )
                model = result.scalar_one_or_none()
                if model is None:
                    return None
                return StoredDocument(
                    id=model.id,
                    revision=model.revision,
                    body=dict(model.body or {}),
                    updated_at=model.updated_at,
                )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read document {document_id!r}", e) from e

    async def put(
        self, document_id: str, body: dict[str, Any], revision: str | None = None
    ) -> str:
        new_revision = _next_revision(revision)
        now = datetime.now(UTC)
        try:
            async with get_session(self._session_factory) as session:
                if revision is None:
                    session.add(
                        BridgeDocumentModel(
                            id=document_id,
                            revision=new_revision,
                            body=body,
                            updated_at=now,
                        )
                    )
                    await session.flush()
                else:
                    result = await session.execute(
                        update(BridgeDocumentModel)
                        .where(
                            BridgeDocumentModel.id == document_id,
                            BridgeDocumentModel.revision == revision,
                        )
                        .values(revision=new_revision, body=body, updated_at=now)
                    )
                    if result.rowcount != 1:
                        raise StoreWriteConflictError(document_id, revision)
        except IntegrityError as e:
            raise StoreWriteConflictError(document_id, revision) from e
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write document {document_id!r}", e) from e

        logger.debug("Wrote document %s at revision %s", document_id, new_revision)
        return new_revision

    async def purge(self, prefix: str, before: datetime) -> int:
        try:
            async with get_session(self._session_factory) as session:
                result = await session.execute(
                    delete(BridgeDocumentModel).where(
                        BridgeDocumentModel.id.startswith(prefix, autoescape=True),
                        BridgeDocumentModel.updated_at < before,
                    )
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to purge documents under {prefix!r}", e) from e
