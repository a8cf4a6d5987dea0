from __future__ import annotations

import pytest

from fleet_eta.schemas.tracking import Coordinate
from fleet_eta.services.cache import VehicleCache, VehicleCacheEntry
from fleet_eta.services.refresh_policy import (
    countdown_eta,
    is_moving,
    should_refresh_eta,
    should_refresh_route,
)
from tests.conftest import DEFAULT_PATH, DESTINATION, NOW, later


def _entry(eta: float = 600.0) -> VehicleCacheEntry:
    entry = VehicleCacheEntry()
    entry.store_eta(eta, NOW)
    entry.store_path(DEFAULT_PATH, NOW)
    entry.last_position = Coordinate(lat=-1.9441, lng=30.0619)
    return entry


def test_missing_entry_forces_refresh() -> None:
    assert should_refresh_eta(None, 0.0, True, NOW) is True
    assert should_refresh_eta(VehicleCacheEntry(), 0.0, True, NOW) is True
    assert should_refresh_route(None, NOW) is True


def test_fresh_entry_is_reused_while_moving() -> None:
    assert should_refresh_eta(_entry(), 20.0, True, later(30)) is False


def test_expired_entry_refreshes() -> None:
    assert should_refresh_eta(_entry(), 20.0, True, later(60)) is True


def test_significant_movement_refreshes() -> None:
    assert should_refresh_eta(_entry(), 150.0, True, later(5)) is True


def test_stationary_vehicle_suppresses_refresh_until_twice_interval() -> None:
    entry = _entry()
    assert should_refresh_eta(entry, 10.0, False, later(90)) is False
    assert should_refresh_eta(entry, 10.0, False, later(120)) is False
    assert should_refresh_eta(entry, 10.0, False, later(121)) is True


def test_stopped_vehicle_that_drifted_far_still_refreshes() -> None:
    assert should_refresh_eta(_entry(), 150.0, False, later(5)) is True


def test_route_refresh_uses_long_interval() -> None:
    entry = _entry()
    assert should_refresh_route(entry, later(60 * 60)) is False
    assert should_refresh_route(entry, later(6 * 60 * 60)) is True


def test_route_refresh_when_path_missing() -> None:
    entry = _entry()
    entry.path = []
    assert should_refresh_route(entry, later(1)) is True


def test_countdown_moving_vehicle() -> None:
    assert countdown_eta(_entry(600.0), True, later(45)) == pytest.approx(555.0)
    assert countdown_eta(_entry(30.0), True, later(45)) == 0.0


def test_countdown_stationary_vehicle_holds_value() -> None:
    assert countdown_eta(_entry(600.0), False, later(45)) == 600.0


def test_countdown_without_cache() -> None:
    assert countdown_eta(None, True, NOW) is None
    assert countdown_eta(VehicleCacheEntry(), True, NOW) is None


def test_is_moving_threshold() -> None:
    assert is_moving(40.0) is True
    assert is_moving(0.4) is False
    assert is_moving(None) is False


def test_failed_eta_never_overwrites_cached_value() -> None:
    entry = _entry(120.0)
    assert entry.store_eta(None, later(60)) is False
    assert entry.eta_seconds == 120.0
    assert entry.eta_refreshed_at == NOW


def test_empty_path_never_overwrites_cached_path() -> None:
    entry = _entry()
    assert entry.store_path([], later(60)) is False
    assert entry.path == DEFAULT_PATH


def test_store_eta_tracks_previous_value() -> None:
    entry = _entry(600.0)
    entry.store_eta(540.0, later(60))
    assert entry.previous_eta_seconds == 600.0
    assert entry.eta_seconds == 540.0


def test_cache_is_keyed_by_vehicle_and_destination() -> None:
    cache = VehicleCache()
    entry = cache.get_or_create("BUS001", DESTINATION)

    assert cache.get_or_create("BUS001", DESTINATION) is entry
    assert cache.get("BUS002", DESTINATION) is None
    assert ("BUS001", DESTINATION.lat, DESTINATION.lon) in cache
    assert len(cache) == 1
