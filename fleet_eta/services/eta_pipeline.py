"""
ETA pipeline service.

Turns one raw fix into one ETAPayload:
- Classifying the vehicle (offline / arrived / tracking)
- Deciding whether to query the routing provider or reuse cached results
- Falling back to cached values when the provider fails or times out
- Smoothing position, speed and ETA
- Deriving the display status
"""

import asyncio
import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Optional

from fleet_eta.core.config import settings
from fleet_eta.core.geo import haversine_distance
from fleet_eta.core.logger import logger, log_fix_skipped, log_provider_request
from fleet_eta.schemas.tracking import Coordinate, Destination, ETAPayload, RawFix
from fleet_eta.services.cache import VehicleCache, VehicleCacheEntry
from fleet_eta.services.classifier import VehicleStatus, classify, fix_age_seconds
from fleet_eta.services.refresh_policy import (
    countdown_eta,
    is_moving,
    should_refresh_eta,
    should_refresh_route,
)
from fleet_eta.services.smoothing import SmoothingRegistry

TRAFFIC_DELAY_SECONDS = 90
FASTER_GAIN_SECONDS = 60


def seconds_to_minutes(eta_seconds: Optional[float]) -> int:
    if not eta_seconds or math.isnan(eta_seconds) or eta_seconds <= 0:
        return 0
    return int(eta_seconds / 60 + 0.5)


def derive_status(
    eta_seconds: Optional[float],
    previous_eta_seconds: Optional[float],
    moving: bool,
    moved_meters: float,
) -> tuple:
    """
    Map an ETA change to a (status, message) pair.

    The new ETA is compared with the cached ETA from the last refresh.
    """
    if not moving and moved_meters < settings.STATIONARY_DISTANCE_METERS:
        return "stopped", "Bus is stopped"

    if eta_seconds is None or previous_eta_seconds is None:
        return "normal", "On the way"

    change = eta_seconds - previous_eta_seconds
    if change >= TRAFFIC_DELAY_SECONDS:
        return "traffic", "Delayed"
    if change < -FASTER_GAIN_SECONDS:
        return "faster", "Moving quickly"
    return "normal", "On the way"


class ETAPipeline:
    """Per-vehicle ETA tracking and smoothing pipeline"""

    def __init__(
        self,
        routing_client,
        cache: Optional[VehicleCache] = None,
        smoothing: Optional[SmoothingRegistry] = None,
        provider_timeout: Optional[float] = None,
    ):
        self.routing_client = routing_client
        self.cache = cache or VehicleCache()
        self.smoothing = smoothing or SmoothingRegistry()
        self.provider_timeout = provider_timeout or settings.PROVIDER_TIMEOUT_SECONDS

        # One lock per vehicle so overlapping calls never update the same entry
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        self.api_call_counts = {"eta": 0, "route": 0}

    def reset_api_stats(self) -> Dict[str, int]:
        """Return the provider call counters and start a new window"""
        counts = dict(self.api_call_counts)
        self.api_call_counts = {"eta": 0, "route": 0}
        return counts

    async def _call_provider(self, kind: str, method, fix: RawFix, destination: Destination):
        """Call the routing provider with a timeout. Returns None on any failure."""
        self.api_call_counts[kind] += 1
        origin = (fix.lat, fix.lon)
        try:
            return await asyncio.wait_for(
                method(fix.lat, fix.lon, destination.lat, destination.lon),
                timeout=self.provider_timeout,
            )
        except asyncio.TimeoutError:
            log_provider_request(kind, origin, success=False, error=f"Timeout after {self.provider_timeout}s")
        except Exception as e:
            log_provider_request(kind, origin, success=False, error=f"{type(e).__name__}: {e}")
        return None

    async def process_fix(
        self,
        fix: RawFix,
        destination: Destination,
        now: Optional[datetime] = None,
    ) -> Optional[ETAPayload]:
        """
        Process one raw fix for one vehicle.

        Returns:
            ETAPayload, or None if the fix has no usable coordinates
        """
        if not (math.isfinite(fix.lat) and math.isfinite(fix.lon)):
            log_fix_skipped(fix.vehicle_id, "missing or invalid GPS coordinates")
            return None

        now = now or datetime.now(timezone.utc)

        async with self._locks[fix.vehicle_id]:
            status = classify(fix, destination, now)

            if status == VehicleStatus.OFFLINE:
                return self._offline_payload(fix, now)
            if status == VehicleStatus.ARRIVED:
                return self._arrived_payload(fix, destination, now)
            return await self._tracking_payload(fix, destination, now)

    def _offline_payload(self, fix: RawFix, now: datetime) -> ETAPayload:
        minutes = seconds_to_minutes(fix_age_seconds(fix, now))
        logger.warning(
            f"Vehicle {fix.vehicle_id} offline/stale. Last update {fix.observed_at.isoformat()}. "
            f"Skipping ETA calculation."
        )
        return ETAPayload(
            vehicle_id=fix.vehicle_id,
            plate_label=fix.plate_label,
            position=Coordinate(lat=fix.lat, lng=fix.lon),
            speed=0.0,
            eta=None,
            eta_seconds=None,
            status="offline",
            status_message=f"Offline. Last data {minutes} min ago.",
            path=[],
            is_moving=False,
            last_fix_timestamp=fix.observed_at,
            timestamp=now,
        )

    def _arrived_payload(self, fix: RawFix, destination: Destination, now: datetime) -> ETAPayload:
        entry = self.cache.get_or_create(fix.vehicle_id, destination)
        entry.mark_arrived()
        entry.last_position = Coordinate(lat=fix.lat, lng=fix.lon)

        state = self.smoothing.get_or_create(fix.vehicle_id)
        smoothed = state.update(fix.lat, fix.lon, fix.speed_kmh, None, destination, now)
        state.reset_eta()

        logger.info(f"Vehicle {fix.vehicle_id} arrived ({smoothed.distance:.0f}m from destination)")
        return ETAPayload(
            vehicle_id=fix.vehicle_id,
            plate_label=fix.plate_label,
            position=smoothed.position,
            speed=smoothed.speed,
            eta=0,
            eta_seconds=0.0,
            status="arrived",
            status_message="Arrived at destination",
            path=[],
            is_moving=is_moving(fix.speed_kmh),
            last_fix_timestamp=fix.observed_at,
            timestamp=now,
        )

    async def _tracking_payload(self, fix: RawFix, destination: Destination, now: datetime) -> ETAPayload:
        vehicle_id = fix.vehicle_id
        moving = is_moving(fix.speed_kmh)
        position = Coordinate(lat=fix.lat, lng=fix.lon)

        existing = self.cache.get(vehicle_id, destination)
        moved = 0.0
        if existing is not None and existing.last_position is not None:
            moved = haversine_distance(
                existing.last_position.lat, existing.last_position.lng, fix.lat, fix.lon
            )

        refresh_eta = should_refresh_eta(existing, moved, moving, now)
        refresh_route = should_refresh_route(existing, now)

        entry = self.cache.get_or_create(vehicle_id, destination)
        cached_eta = entry.eta_seconds
        expected_eta = countdown_eta(entry, moving, now)

        if refresh_eta or refresh_route:
            logger.info(
                f"Vehicle {vehicle_id}: refreshing (eta={refresh_eta}, route={refresh_route}, "
                f"moved={moved:.0f}m)"
            )

        raw_eta = expected_eta
        if refresh_eta:
            raw_eta = await self._refresh_eta(entry, fix, destination, now, expected_eta)
        elif expected_eta is not None:
            logger.debug(
                f"Vehicle {vehicle_id}: cache hit, ETA {seconds_to_minutes(expected_eta)} min "
                f"({'counting down' if moving else 'held, vehicle stopped'})"
            )

        if refresh_route:
            await self._refresh_route(entry, fix, destination, now)

        state = self.smoothing.get_or_create(vehicle_id)
        smoothed = state.update(fix.lat, fix.lon, fix.speed_kmh, raw_eta, destination, now)

        status, message = derive_status(raw_eta, cached_eta, moving, moved)

        return ETAPayload(
            vehicle_id=vehicle_id,
            plate_label=fix.plate_label,
            position=smoothed.position,
            speed=smoothed.speed,
            eta=seconds_to_minutes(smoothed.eta) if smoothed.eta is not None else None,
            eta_seconds=smoothed.eta,
            status=status,
            status_message=message,
            path=list(entry.path) if entry.path else [position, Coordinate(lat=destination.lat, lng=destination.lon)],
            is_moving=moving,
            last_fix_timestamp=fix.observed_at,
            timestamp=now,
        )

    async def _refresh_eta(
        self,
        entry: VehicleCacheEntry,
        fix: RawFix,
        destination: Destination,
        now: datetime,
        fallback_eta: Optional[float],
    ) -> Optional[float]:
        result = await self._call_provider("eta", self.routing_client.get_eta, fix, destination)

        if result is not None and not result.failed and entry.store_eta(result.duration_seconds, now):
            entry.last_position = Coordinate(lat=fix.lat, lng=fix.lon)
            return entry.eta_seconds

        if fallback_eta is not None:
            logger.warning(
                f"Vehicle {fix.vehicle_id}: ETA refresh failed, using cached ETA "
                f"{seconds_to_minutes(fallback_eta)} min"
            )
        else:
            logger.warning(f"Vehicle {fix.vehicle_id}: ETA refresh failed and no cached ETA exists")
        return fallback_eta

    async def _refresh_route(
        self,
        entry: VehicleCacheEntry,
        fix: RawFix,
        destination: Destination,
        now: datetime,
    ):
        result = await self._call_provider("route", self.routing_client.get_route, fix, destination)
        if result is None or not result.path:
            return

        if result.source == "fallback":
            # Straight-line fallback: show it only until a real path exists, retry next cycle
            if not entry.path:
                entry.path = list(result.path)
            return

        entry.store_path(result.path, now)
