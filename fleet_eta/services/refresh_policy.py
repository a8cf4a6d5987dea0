"""
Decides when to call the routing provider and when to reuse cached results.

ETA refreshes are driven by cache age and distance moved; a parked vehicle
only refreshes once the cache is twice the normal interval old. Route paths
refresh on a much longer interval.
"""

from datetime import datetime
from typing import Optional

from fleet_eta.core.config import settings
from fleet_eta.services.cache import VehicleCacheEntry


def _age_seconds(refreshed_at: Optional[datetime], now: datetime) -> Optional[float]:
    if refreshed_at is None:
        return None
    return (now - refreshed_at).total_seconds()


def is_moving(speed_kmh: Optional[float]) -> bool:
    """A vehicle counts as moving once its speed exceeds the configured threshold"""
    return (speed_kmh or 0.0) > settings.MOVING_SPEED_THRESHOLD_KMH


def should_refresh_eta(
    entry: Optional[VehicleCacheEntry],
    moved_meters: float,
    moving: bool,
    now: datetime,
) -> bool:
    if entry is None or entry.eta_seconds is None:
        return True

    age = _age_seconds(entry.eta_refreshed_at, now)
    if age is None:
        return True

    interval = settings.ETA_REFRESH_INTERVAL_SECONDS

    if not moving and moved_meters < settings.STATIONARY_DISTANCE_METERS:
        return age > interval * 2

    return age >= interval or moved_meters > settings.MIN_DISTANCE_FOR_REFRESH_METERS


def should_refresh_route(entry: Optional[VehicleCacheEntry], now: datetime) -> bool:
    if entry is None or not entry.path:
        return True

    age = _age_seconds(entry.route_refreshed_at, now)
    if age is None:
        return True
    return age >= settings.ROUTE_REFRESH_INTERVAL_SECONDS


def countdown_eta(entry: Optional[VehicleCacheEntry], moving: bool, now: datetime) -> Optional[float]:
    """
    Cached ETA adjusted for elapsed wall-clock time.

    Moving vehicles count down linearly from the last refresh; stopped
    vehicles keep the cached value unchanged.
    """
    if entry is None or entry.eta_seconds is None:
        return None

    if not moving:
        return entry.eta_seconds

    elapsed = _age_seconds(entry.eta_refreshed_at, now) or 0.0
    return max(0.0, entry.eta_seconds - max(0.0, elapsed))
