from __future__ import annotations

from datetime import timedelta

from fleet_eta.services.classifier import VehicleStatus, classify
from tests.conftest import DESTINATION, NOW, make_fix


def test_fresh_fix_far_from_destination_is_tracking() -> None:
    assert classify(make_fix(), DESTINATION, NOW) == VehicleStatus.TRACKING


def test_fix_older_than_threshold_is_offline() -> None:
    fix = make_fix(observed_at=NOW - timedelta(minutes=11))
    assert classify(fix, DESTINATION, NOW) == VehicleStatus.OFFLINE


def test_fix_just_inside_threshold_is_tracking() -> None:
    fix = make_fix(observed_at=NOW - timedelta(minutes=9, seconds=59))
    assert classify(fix, DESTINATION, NOW) == VehicleStatus.TRACKING


def test_fix_within_arrival_radius_is_arrived() -> None:
    # ~22 m north of the destination
    fix = make_fix(lat=DESTINATION.lat + 0.0002, lon=DESTINATION.lon)
    assert classify(fix, DESTINATION, NOW) == VehicleStatus.ARRIVED


def test_offline_takes_precedence_over_arrival() -> None:
    fix = make_fix(lat=DESTINATION.lat, lon=DESTINATION.lon, observed_at=NOW - timedelta(hours=1))
    assert classify(fix, DESTINATION, NOW) == VehicleStatus.OFFLINE
