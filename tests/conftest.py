from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from fleet_eta.schemas.tracking import Coordinate, Destination, RawFix, RouteResult

DESTINATION = Destination(lat=-1.9684, lon=30.0891)
NOW = datetime(2026, 1, 1, 8, 0, 0, tzinfo=timezone.utc)

DEFAULT_PATH = [
    Coordinate(lat=-1.9441, lng=30.0619),
    Coordinate(lat=-1.9560, lng=30.0750),
    Coordinate(lat=-1.9684, lng=30.0891),
]


class FakeRoutingClient:
    """Routing client double with call counters and switchable failures"""

    def __init__(self, eta: Optional[float] = 900.0, path: Optional[List[Coordinate]] = None,
                 fail: bool = False, delay: float = 0.0):
        self.eta = eta
        self.path = list(path) if path is not None else list(DEFAULT_PATH)
        self.route_source = "osrm"
        self.fail = fail
        self.delay = delay
        self.eta_calls = 0
        self.route_calls = 0

    async def get_eta(self, origin_lat, origin_lon, dest_lat, dest_lon) -> RouteResult:
        self.eta_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("provider unavailable")
        return RouteResult(duration_seconds=self.eta, distance_meters=5000.0, source="osrm")

    async def get_route(self, origin_lat, origin_lon, dest_lat, dest_lon) -> RouteResult:
        self.route_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("provider unavailable")
        return RouteResult(path=list(self.path), source=self.route_source)


def make_fix(
    vehicle_id: str = "BUS001",
    lat: float = -1.9441,
    lon: float = 30.0619,
    speed: Optional[float] = 40.0,
    observed_at: Optional[datetime] = None,
) -> RawFix:
    return RawFix(
        vehicle_id=vehicle_id,
        plate_label=f"Plate {vehicle_id}",
        lat=lat,
        lon=lon,
        speed_kmh=speed,
        observed_at=observed_at or NOW,
    )


def later(seconds: float) -> datetime:
    return NOW + timedelta(seconds=seconds)


@pytest.fixture
def destination() -> Destination:
    return DESTINATION


@pytest.fixture
def routing_client() -> FakeRoutingClient:
    return FakeRoutingClient()
