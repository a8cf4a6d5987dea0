import asyncio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import List

from fleet_eta.core.logger import logger
from fleet_eta.schemas.tracking import (
    ETAPayload,
    FleetSnapshot,
    NotificationRegisterRequest,
    NotificationUnregisterRequest,
    TrackingStatusResponse,
)
from fleet_eta.services.broadcast import SNAPSHOT_EVENT
from fleet_eta.services.tracker import broadcaster, fleet_tracker
from fleet_eta.api import controllers_tracking

router = APIRouter(tags=["Tracking"])


# ============ Tracker Control ============

@router.get("/tracking/status", response_model=TrackingStatusResponse)
async def get_tracking_status():
    """Current tracker state and last fetch result."""
    return controllers_tracking.get_tracking_status()


@router.post("/tracking/start", response_model=TrackingStatusResponse)
async def start_tracking():
    """Start the periodic tracking loop. No-op if already running."""
    return await controllers_tracking.start_tracking()


@router.post("/tracking/stop", response_model=TrackingStatusResponse)
async def stop_tracking():
    """Stop the periodic tracking loop."""
    return await controllers_tracking.stop_tracking()


# ============ Live Data ============

@router.get("/tracking/vehicles", response_model=List[ETAPayload])
async def get_latest_payloads():
    """Latest payload per vehicle."""
    return controllers_tracking.get_latest_payloads()


@router.get("/tracking/snapshot", response_model=FleetSnapshot)
async def get_snapshot():
    """Fleet snapshot from the last successful cycle."""
    return controllers_tracking.get_snapshot()


# ============ Notifications ============

@router.post("/register-notification")
async def register_notification(request: NotificationRegisterRequest):
    """
    Register an arrival notification for a vehicle.

    A push is sent once the vehicle's ETA drops to `notification_minutes`.
    Registering the same token again re-arms the subscription.
    """
    return controllers_tracking.register_notification(request)


@router.post("/unregister-notification")
async def unregister_notification(request: NotificationUnregisterRequest):
    """Remove an arrival notification."""
    return controllers_tracking.unregister_notification(request)


# ============ WebSocket Feed ============

@router.websocket("/ws/tracking")
async def tracking_feed(websocket: WebSocket):
    """
    Live event stream.

    Sends the latest snapshot on connect, then every `route-update` and
    `devices-snapshot` event as it is produced.
    """
    await websocket.accept()
    queue = broadcaster.subscribe()

    async def forward_events():
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    sender = None
    try:
        await websocket.send_json({
            "event": SNAPSHOT_EVENT,
            "data": fleet_tracker.last_snapshot.model_dump(mode="json"),
        })
        sender = asyncio.create_task(forward_events())
        # Clients only listen; reading detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")
    finally:
        if sender is not None:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"WebSocket sender stopped: {type(e).__name__} - {str(e)}")
        broadcaster.unsubscribe(queue)
