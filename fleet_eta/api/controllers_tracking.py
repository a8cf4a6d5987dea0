"""
Controllers for tracking endpoints.

This module handles the business logic for:
- Starting/stopping the fleet tracker
- Reading the latest payloads and fleet snapshot
- Registering/unregistering arrival notifications
"""

from typing import List
from fastapi import HTTPException, status

from fleet_eta.core.logger import log_warning
from fleet_eta.schemas.tracking import (
    ETAPayload,
    FleetSnapshot,
    NotificationRegisterRequest,
    NotificationUnregisterRequest,
    TrackingStatusResponse,
)
from fleet_eta.services.tracker import fleet_tracker, notification_service


def get_tracking_status() -> TrackingStatusResponse:
    return TrackingStatusResponse(
        running=fleet_tracker.is_running,
        poll_interval_seconds=fleet_tracker.poll_interval,
        last_fetched_at=fleet_tracker.last_fetched_at,
        last_fetch_error=fleet_tracker.last_fetch_error,
        destination=fleet_tracker.destination,
    )


async def start_tracking() -> TrackingStatusResponse:
    await fleet_tracker.start()
    return get_tracking_status()


async def stop_tracking() -> TrackingStatusResponse:
    await fleet_tracker.stop()
    return get_tracking_status()


def get_latest_payloads() -> List[ETAPayload]:
    return list(fleet_tracker.latest_payloads.values())


def get_snapshot() -> FleetSnapshot:
    return fleet_tracker.last_snapshot


def register_notification(request: NotificationRegisterRequest) -> dict:
    try:
        notification_service.register(
            vehicle_id=request.vehicle_id,
            notification_minutes=request.notification_minutes,
            push_token=request.push_token,
        )
    except ValueError as e:
        log_warning(f"register-notification ({request.vehicle_id})", str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"success": True}


def unregister_notification(request: NotificationUnregisterRequest) -> dict:
    removed = notification_service.unregister(request.vehicle_id, request.push_token)
    return {"success": True, "removed": removed}
