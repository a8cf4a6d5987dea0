"""
GPS and ETA smoothing.

Position, speed and ETA each go through a Kalman filter followed by an
exponential moving average (EMA). The Kalman stage alone reacts too quickly
to jumps between provider calls; the EMA alone lags too much.

ETA is additionally rate-limited so that it counts down smoothly and never
snaps: at most a 5% decrease or a 2% increase per update before filtering,
and a hard 5% clamp on the final value.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Optional

from fleet_eta.core.geo import haversine_distance, calculate_bearing, move_position
from fleet_eta.schemas.tracking import Coordinate, Destination

# Filter tuning
POSITION_PROCESS_NOISE = 1e-5
POSITION_MEASUREMENT_NOISE = 1e-4
POSITION_INITIAL_ERROR = 1e-4

SPEED_MAX_KMH = 120.0
SPEED_PROCESS_NOISE = 0.5
SPEED_MEASUREMENT_NOISE = 2.0
SPEED_EMA_ALPHA = 0.3

ETA_MAX_SECONDS = 3600.0
ETA_PROCESS_NOISE = 1.0
ETA_MEASUREMENT_NOISE = 15.0
ETA_EMA_ALPHA = 0.05
ETA_MAX_DECREASE = 0.05
ETA_MAX_INCREASE = 0.02
ETA_MAX_FINAL_CHANGE = 0.05

HISTORY_SIZE = 5


@dataclass
class KalmanState:
    """1-D Kalman filter state"""
    value: float
    error_covariance: float = 1.0


@dataclass
class PositionFilterState:
    """Two independent 1-D filters, one per axis"""
    lat: KalmanState
    lng: KalmanState


@dataclass
class HistorySample:
    position: Coordinate
    timestamp: datetime
    speed: float


def _is_number(value) -> bool:
    return value is not None and isinstance(value, (int, float)) and not math.isnan(value)


def kalman_filter_1d(
    state: Optional[KalmanState],
    measurement: float,
    process_noise: float = 0.01,
    measurement_noise: float = 0.25,
) -> KalmanState:
    """
    One predict/update step of a scalar Kalman filter.

    The first measurement initializes the filter with error covariance 1.0.
    """
    if state is None:
        return KalmanState(value=measurement, error_covariance=1.0)

    predicted_covariance = state.error_covariance + process_noise
    gain = predicted_covariance / (predicted_covariance + measurement_noise)

    return KalmanState(
        value=state.value + gain * (measurement - state.value),
        error_covariance=(1 - gain) * predicted_covariance,
    )


def kalman_filter_2d(
    state: Optional[PositionFilterState],
    lat: float,
    lng: float,
    process_noise: float = POSITION_PROCESS_NOISE,
    measurement_noise: float = POSITION_MEASUREMENT_NOISE,
) -> PositionFilterState:
    """Filter a coordinate pair with one scalar filter per axis"""
    if state is None:
        return PositionFilterState(
            lat=KalmanState(lat, POSITION_INITIAL_ERROR),
            lng=KalmanState(lng, POSITION_INITIAL_ERROR),
        )

    return PositionFilterState(
        lat=kalman_filter_1d(state.lat, lat, process_noise, measurement_noise),
        lng=kalman_filter_1d(state.lng, lng, process_noise, measurement_noise),
    )


def exponential_moving_average(previous: Optional[float], new_value: float, alpha: float = 0.2) -> float:
    """EMA = alpha * new + (1 - alpha) * previous; the first value seeds the average."""
    if previous is None:
        return new_value
    return alpha * new_value + (1 - alpha) * previous


def _rate_limit(value: float, previous: float, max_decrease: float, max_increase: float) -> float:
    lower = previous * (1 - max_decrease)
    upper = previous * (1 + max_increase)
    return min(max(value, lower), upper)


@dataclass
class SpeedState:
    speed: float = 0.0
    speed_filter: Optional[KalmanState] = None
    speed_ema: Optional[float] = None


@dataclass
class ETAState:
    eta: float = 0.0
    eta_filter: Optional[KalmanState] = None
    eta_ema: Optional[float] = None


def smooth_speed(state: Optional[SpeedState], raw_speed: Optional[float]) -> SpeedState:
    """Clamp to [0, 120] km/h, Kalman filter, then EMA."""
    if not _is_number(raw_speed):
        return state or SpeedState()

    clamped = max(0.0, min(SPEED_MAX_KMH, float(raw_speed)))
    previous = state or SpeedState()

    speed_filter = kalman_filter_1d(
        previous.speed_filter, clamped, SPEED_PROCESS_NOISE, SPEED_MEASUREMENT_NOISE
    )
    speed_ema = exponential_moving_average(
        previous.speed_ema if previous.speed_ema is not None else clamped,
        speed_filter.value,
        SPEED_EMA_ALPHA,
    )

    return SpeedState(speed=max(0.0, speed_ema), speed_filter=speed_filter, speed_ema=speed_ema)


def smooth_eta(state: Optional[ETAState], raw_eta: Optional[float]) -> ETAState:
    """
    Smooth a raw ETA (seconds) so the displayed value never jumps.

    Invalid or negative input leaves the state unchanged.
    """
    if not _is_number(raw_eta) or raw_eta < 0:
        return state or ETAState()

    clamped = max(0.0, min(ETA_MAX_SECONDS, float(raw_eta)))
    previous = state or ETAState()
    previous_ema = previous.eta_ema

    target = clamped
    if previous_ema is not None and previous_ema > 0:
        target = _rate_limit(clamped, previous_ema, ETA_MAX_DECREASE, ETA_MAX_INCREASE)

    eta_filter = kalman_filter_1d(
        previous.eta_filter, target, ETA_PROCESS_NOISE, ETA_MEASUREMENT_NOISE
    )
    eta_ema = exponential_moving_average(
        previous_ema if previous_ema is not None else target,
        eta_filter.value,
        ETA_EMA_ALPHA,
    )

    # Hard safety clamp against the previous output
    if previous_ema is not None and previous_ema > 0:
        eta_ema = _rate_limit(eta_ema, previous_ema, ETA_MAX_FINAL_CHANGE, ETA_MAX_FINAL_CHANGE)

    eta_ema = max(0.0, eta_ema)
    return ETAState(eta=eta_ema, eta_filter=eta_filter, eta_ema=eta_ema)


def smooth_position(state: Optional[PositionFilterState], lat: float, lng: float) -> Optional[PositionFilterState]:
    """Reduce GPS jitter. Non-finite input leaves the state unchanged."""
    if not (_is_number(lat) and _is_number(lng)):
        return state
    return kalman_filter_2d(state, lat, lng)


@dataclass
class SmoothedOutput:
    position: Coordinate
    speed: float
    eta: Optional[float]
    raw_eta: Optional[float]
    distance: float


@dataclass
class VehicleSmoothingState:
    """Filter state and short trajectory history for one vehicle"""
    vehicle_id: str
    position_filter: Optional[PositionFilterState] = None
    speed_state: Optional[SpeedState] = None
    eta_state: Optional[ETAState] = None
    history: Deque[HistorySample] = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))
    last_update: Optional[datetime] = None

    @property
    def position(self) -> Optional[Coordinate]:
        if self.position_filter is None:
            return None
        return Coordinate(lat=self.position_filter.lat.value, lng=self.position_filter.lng.value)

    def update(
        self,
        lat: float,
        lng: float,
        speed_kmh: Optional[float],
        raw_eta: Optional[float],
        destination: Destination,
        now: datetime,
    ) -> SmoothedOutput:
        """Feed one fix through all filters and record it in the history."""
        self.position_filter = smooth_position(self.position_filter, lat, lng)
        self.speed_state = smooth_speed(self.speed_state, speed_kmh)
        position = self.position

        distance = haversine_distance(position.lat, position.lng, destination.lat, destination.lon)

        eta = None
        if _is_number(raw_eta):
            self.eta_state = smooth_eta(self.eta_state, raw_eta)
        if self.eta_state is not None and self.eta_state.eta_ema is not None:
            eta = self.eta_state.eta

        self.history.append(HistorySample(position=position, timestamp=now, speed=self.speed_state.speed))
        self.last_update = now

        return SmoothedOutput(
            position=position,
            speed=self.speed_state.speed,
            eta=eta,
            raw_eta=raw_eta,
            distance=distance,
        )

    def reset_eta(self):
        """Forget ETA filter state, e.g. once the vehicle has arrived"""
        self.eta_state = None

    def predict_position(self, seconds_ahead: float = 1.0) -> Optional[Coordinate]:
        """
        Project the current trajectory forward.

        Uses average velocity and bearing over the last three samples.
        Returns None with fewer than two samples or no elapsed time.
        """
        if len(self.history) < 2:
            return None

        recent = list(self.history)[-3:]
        previous = recent[0]
        latest = recent[-1]
        elapsed = (latest.timestamp - previous.timestamp).total_seconds()
        if elapsed <= 0:
            return None

        distance = haversine_distance(
            previous.position.lat, previous.position.lng,
            latest.position.lat, latest.position.lng,
        )
        velocity = distance / elapsed
        bearing = calculate_bearing(
            previous.position.lat, previous.position.lng,
            latest.position.lat, latest.position.lng,
        )

        lat, lng = move_position(latest.position.lat, latest.position.lng, bearing, velocity * seconds_ahead)
        return Coordinate(lat=lat, lng=lng)


class SmoothingRegistry:
    """Owns one VehicleSmoothingState per vehicle"""

    def __init__(self):
        self._states: Dict[str, VehicleSmoothingState] = {}

    def get(self, vehicle_id: str) -> Optional[VehicleSmoothingState]:
        return self._states.get(vehicle_id)

    def get_or_create(self, vehicle_id: str) -> VehicleSmoothingState:
        state = self._states.get(vehicle_id)
        if state is None:
            state = VehicleSmoothingState(vehicle_id=vehicle_id)
            self._states[vehicle_id] = state
        return state

    def __len__(self) -> int:
        return len(self._states)
