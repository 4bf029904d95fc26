"""API router for bridge statistics."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from usage_bridge.auth import StatsAccess
from usage_bridge.bridge.context import BridgeContext
from usage_bridge.bridge.models import Checkpoint
from usage_bridge.bridge.scheduler import BridgeScheduler
from usage_bridge.bridge.statistics import BridgeStatistics, ErrorState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["stats"])


class BridgeStats(BaseModel):
    """Statistics of one bridge."""

    config: dict[str, Any] = Field(default_factory=dict, description="Public configuration")
    cache: Checkpoint = Field(..., description="Current checkpoint")
    statistics: BridgeStatistics = Field(..., description="Bridge counters")
    errors: ErrorState = Field(..., description="Error state")
    scheduler: dict[str, Any] = Field(default_factory=dict, description="Scheduler status")


def get_bridge_context(request: Request) -> BridgeContext:
    """Get the bridge context of the running application."""
    context = getattr(request.app.state, "bridge_context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Bridge not started")
    return context


def get_bridge_scheduler(request: Request) -> BridgeScheduler | None:
    return getattr(request.app.state, "bridge_scheduler", None)


@router.get(
    "/stats",
    response_model=dict[str, BridgeStats],
    summary="Get bridge statistics",
    description="Configuration, checkpoint, counters and error state of the bridge.",
)
async def get_stats(
    _client: StatsAccess,
    context: Annotated[BridgeContext, Depends(get_bridge_context)],
    scheduler: Annotated[BridgeScheduler | None, Depends(get_bridge_scheduler)],
) -> dict[str, BridgeStats]:
    """Get statistics keyed by the bridge type."""
    config = context.settings.public_view()
    if context.services:
        # Includes the GUIDs resolved at startup
        config["services"] = {
            label: resource.model_dump() for label, resource in context.services.items()
        }
    stats = BridgeStats(
        config=config,
        cache=context.progress.current,
        statistics=context.statistics,
        errors=context.errors,
        scheduler=scheduler.get_status() if scheduler else {},
    )
    return {context.settings.bridge_type: stats}
