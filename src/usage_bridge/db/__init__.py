"""Database persistence for bridge documents."""

from usage_bridge.db.base import (
    Base,
    close_database,
    get_engine,
    get_session,
    get_session_factory,
    init_database,
)
from usage_bridge.db.models import BridgeDocumentModel

__all__ = [
    "Base",
    "BridgeDocumentModel",
    "close_database",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_database",
]
