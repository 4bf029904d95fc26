"""Usage bridge: relays Cloud Foundry usage events to the usage collector."""

from usage_bridge.bridge.context import BridgeContext, build_context
from usage_bridge.bridge.errors import (
    BridgeError,
    BuilderError,
    CursorInvalidError,
    GuidResolutionError,
    RetrievalFailedError,
    StoreError,
    StoreWriteConflictError,
    TokenAcquisitionError,
    TransientNetworkError,
    UsageReportError,
)
from usage_bridge.bridge.router import router as stats_router
from usage_bridge.bridge.scheduler import BridgeScheduler, BridgeState

__all__ = [
    "BridgeContext",
    "BridgeError",
    "BridgeScheduler",
    "BridgeState",
    "BuilderError",
    "CursorInvalidError",
    "GuidResolutionError",
    "RetrievalFailedError",
    "StoreError",
    "StoreWriteConflictError",
    "TokenAcquisitionError",
    "TransientNetworkError",
    "UsageReportError",
    "build_context",
    "stats_router",
]
