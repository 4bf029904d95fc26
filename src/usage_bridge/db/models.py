"""SQLAlchemy ORM models for database persistence."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, String, func
from sqlalchemy.orm import Mapped, mapped_column

from usage_bridge.db.base import Base


class BridgeDocumentModel(Base):
    """ORM model for revisioned bridge documents.

    Holds the checkpoint document and the carry-over ledger entries. The
    revision changes on every write and must be presented to overwrite.
    """

    __tablename__ = "bridge_documents"

    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    revision: Mapped[str] = mapped_column(String(64), nullable=False)
    body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
