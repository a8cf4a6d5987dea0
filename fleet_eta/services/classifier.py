"""
Offline/arrival classification of raw fixes.

Runs before any refresh decision: offline and arrived vehicles never
trigger a routing provider call.
"""

from datetime import datetime
from enum import Enum

from fleet_eta.core.config import settings
from fleet_eta.core.geo import haversine_distance
from fleet_eta.schemas.tracking import Destination, RawFix


class VehicleStatus(str, Enum):
    TRACKING = "tracking"
    OFFLINE = "offline"
    ARRIVED = "arrived"


def fix_age_seconds(fix: RawFix, now: datetime) -> float:
    return (now - fix.observed_at).total_seconds()


def classify(fix: RawFix, destination: Destination, now: datetime) -> VehicleStatus:
    """
    Classify a fix as offline (stale), arrived (within the arrival radius)
    or tracking.
    """
    if fix_age_seconds(fix, now) > settings.STALE_THRESHOLD_SECONDS:
        return VehicleStatus.OFFLINE

    distance = haversine_distance(fix.lat, fix.lon, destination.lat, destination.lon)
    if distance <= settings.ARRIVAL_RADIUS_METERS:
        return VehicleStatus.ARRIVED

    return VehicleStatus.TRACKING
