"""Operator routes for the device link."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from wscontroller.core.container import container
from wscontroller.core.logging import get_logger
from wscontroller.services.link.broadcaster import EventLogListener
from wscontroller.services.link.client import ConnectionController
from wscontroller.services.link.exceptions import InvalidIdentity

logger = get_logger(__name__)
router = APIRouter(prefix="/api/device", tags=["device"])


class IdentityRequest(BaseModel):
    """Request model for changing the device code."""
    device_number: str = Field(..., description="3-digit device code (e.g., '042')")


@router.get("/status")
async def get_link_status(
    limit: int = 50,
    controller: ConnectionController = Depends(lambda: container.controller()),
    listener: EventLogListener = Depends(lambda: container.listener())
):
    """Current link state and the most recent link events."""
    return {
        "success": True,
        **controller.snapshot(),
        "events": listener.recent_events(limit) if hasattr(listener, "recent_events") else [],
    }


@router.post("/connect")
async def connect_link(
    controller: ConnectionController = Depends(lambda: container.controller())
):
    """Start (or restart) the connection and re-enable auto-reconnect."""
    logger.info("[Device API] Connect requested")
    started = controller.connect()
    return {
        "success": started,
        **controller.snapshot(),
    }


@router.post("/disconnect")
async def disconnect_link(
    controller: ConnectionController = Depends(lambda: container.controller())
):
    """Stop the connection; no automatic reconnect until /connect."""
    logger.info("[Device API] Disconnect requested")
    controller.disconnect()
    return {
        "success": True,
        **controller.snapshot(),
    }


@router.put("/identity")
async def update_identity(
    request: IdentityRequest,
    controller: ConnectionController = Depends(lambda: container.controller())
):
    """Persist a new device code and reconnect with it."""
    logger.info("[Device API] Identity update", device_number=request.device_number)
    try:
        controller.update_identity(request.device_number)
    except InvalidIdentity as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "success": True,
        **controller.snapshot(),
    }


@router.post("/verify")
async def verify_link(
    controller: ConnectionController = Depends(lambda: container.controller())
):
    """Ping the server now; the link reconnects if no pong arrives in time."""
    started = controller.verify_connection()
    return {
        "success": started,
        **controller.snapshot(),
    }
