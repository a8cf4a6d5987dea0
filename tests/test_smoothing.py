from __future__ import annotations

from datetime import timedelta

import pytest

from fleet_eta.core.geo import calculate_bearing, haversine_distance
from fleet_eta.schemas.tracking import Coordinate
from fleet_eta.services.smoothing import (
    ETAState,
    HistorySample,
    KalmanState,
    SmoothingRegistry,
    VehicleSmoothingState,
    exponential_moving_average,
    kalman_filter_1d,
    kalman_filter_2d,
    smooth_eta,
    smooth_position,
    smooth_speed,
)
from tests.conftest import DESTINATION, NOW, later


def test_kalman_first_measurement_initializes_state() -> None:
    state = kalman_filter_1d(None, 42.0)
    assert state == KalmanState(value=42.0, error_covariance=1.0)


def test_kalman_step_matches_update_equations() -> None:
    state = kalman_filter_1d(KalmanState(10.0, 1.0), 20.0, process_noise=0.01, measurement_noise=0.25)

    gain = 1.01 / (1.01 + 0.25)
    assert state.value == pytest.approx(10.0 + gain * 10.0)
    assert state.error_covariance == pytest.approx((1 - gain) * 1.01)


def test_kalman_2d_filters_each_axis_independently() -> None:
    state = kalman_filter_2d(None, -1.9441, 30.0619)
    assert (state.lat.value, state.lng.value) == (-1.9441, 30.0619)

    updated = kalman_filter_2d(state, -1.9451, 30.0619)
    assert -1.9451 < updated.lat.value < -1.9441
    assert updated.lng.value == pytest.approx(30.0619)


def test_ema_seeds_with_first_value() -> None:
    assert exponential_moving_average(None, 7.0, 0.3) == 7.0
    assert exponential_moving_average(10.0, 20.0, 0.3) == pytest.approx(13.0)


def test_smooth_speed_clamps_to_valid_range() -> None:
    assert smooth_speed(None, 200.0).speed == pytest.approx(120.0)
    assert smooth_speed(None, -5.0).speed == 0.0


def test_smooth_speed_ignores_missing_measurement() -> None:
    state = smooth_speed(None, 30.0)
    assert smooth_speed(state, None) is state
    assert smooth_speed(state, float("nan")) is state


def test_smooth_speed_damps_spikes() -> None:
    state = smooth_speed(None, 30.0)
    state = smooth_speed(state, 90.0)
    assert 30.0 < state.speed < 60.0


def test_smooth_eta_first_value_passes_through_clamped() -> None:
    assert smooth_eta(None, 900.0).eta == pytest.approx(900.0)
    assert smooth_eta(None, 7200.0).eta == pytest.approx(3600.0)


def test_smooth_eta_rejects_invalid_input() -> None:
    state = smooth_eta(None, 600.0)
    assert smooth_eta(state, -1.0) is state
    assert smooth_eta(state, None) is state
    assert smooth_eta(None, None) == ETAState()


def test_smooth_eta_alternating_input_stays_within_rate_limits() -> None:
    state = None
    outputs = []
    for i in range(60):
        state = smooth_eta(state, 100.0 if i % 2 == 0 else 10.0)
        outputs.append(state.eta)

    for previous, current in zip(outputs, outputs[1:]):
        change = (current - previous) / previous
        assert change >= -0.05 - 1e-9
        assert change <= 0.02 + 1e-9
    assert all(value >= 0 for value in outputs)


def test_smooth_eta_large_drop_is_gradual() -> None:
    state = smooth_eta(None, 1000.0)
    state = smooth_eta(state, 0.0)
    assert state.eta >= 950.0 - 1e-9


def test_smooth_position_ignores_invalid_coordinates() -> None:
    state = smooth_position(None, -1.9441, 30.0619)
    assert smooth_position(state, float("nan"), 30.0) is state


def test_history_is_bounded_and_ordered() -> None:
    state = VehicleSmoothingState(vehicle_id="BUS001")
    for i in range(8):
        state.update(-1.9441 - i * 0.0005, 30.0619, 40.0, 900.0 - i * 10, DESTINATION, later(i * 10))

    assert len(state.history) == 5
    timestamps = [sample.timestamp for sample in state.history]
    assert timestamps == sorted(timestamps)
    assert timestamps[0] == later(30)


def test_update_returns_distance_to_destination() -> None:
    state = VehicleSmoothingState(vehicle_id="BUS001")
    out = state.update(-1.9441, 30.0619, 40.0, 900.0, DESTINATION, NOW)

    expected = haversine_distance(-1.9441, 30.0619, DESTINATION.lat, DESTINATION.lon)
    assert out.distance == pytest.approx(expected)
    assert out.eta == pytest.approx(900.0)
    assert out.raw_eta == 900.0


def test_update_without_eta_reports_none_until_initialized() -> None:
    state = VehicleSmoothingState(vehicle_id="BUS001")
    assert state.update(-1.9441, 30.0619, 40.0, None, DESTINATION, NOW).eta is None


def test_predict_position_needs_two_samples() -> None:
    state = VehicleSmoothingState(vehicle_id="BUS001")
    assert state.predict_position(10) is None

    state.history.append(HistorySample(Coordinate(lat=0.0, lng=0.0), NOW, 36.0))
    assert state.predict_position(10) is None


def test_predict_position_requires_elapsed_time() -> None:
    state = VehicleSmoothingState(vehicle_id="BUS001")
    state.history.append(HistorySample(Coordinate(lat=0.0, lng=0.0), NOW, 36.0))
    state.history.append(HistorySample(Coordinate(lat=0.001, lng=0.0), NOW, 36.0))
    assert state.predict_position(10) is None


def test_predict_position_extrapolates_last_three_samples() -> None:
    state = VehicleSmoothingState(vehicle_id="BUS001")
    step = 100.0 / 111194.93  # 100 m of latitude
    # An old sample heading the other way must not influence the prediction
    state.history.append(HistorySample(Coordinate(lat=0.01, lng=0.0), NOW - timedelta(seconds=10), 36.0))
    for i in range(3):
        state.history.append(HistorySample(Coordinate(lat=i * step, lng=0.0), later(i * 10), 36.0))

    predicted = state.predict_position(10)
    latest = state.history[-1].position

    assert haversine_distance(latest.lat, latest.lng, predicted.lat, predicted.lng) == pytest.approx(100.0, rel=1e-3)
    assert calculate_bearing(latest.lat, latest.lng, predicted.lat, predicted.lng) == pytest.approx(0.0, abs=0.01)


def test_registry_keeps_one_state_per_vehicle() -> None:
    registry = SmoothingRegistry()
    first = registry.get_or_create("BUS001")
    assert registry.get_or_create("BUS001") is first
    registry.get_or_create("BUS002")
    assert len(registry) == 2
    assert registry.get("BUS003") is None
