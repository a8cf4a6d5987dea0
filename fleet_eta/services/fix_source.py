"""
Raw-fix sources.

Device records arrive with loosely shaped fields. They are normalized into
RawFix here, before any pipeline logic runs; records that fail
normalization are skipped.

Two sources are provided:
- LiveDeviceSource: polls the telemetry HTTP endpoint
- DummyGPSSource: simulates buses driving towards the destination
"""

import math
import random
import httpx
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from fleet_eta.core.config import settings
from fleet_eta.core.logger import logger, log_fix_skipped
from fleet_eta.schemas.tracking import RawFix


class FixSourceError(Exception):
    """The whole fleet fetch failed for this cycle"""


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


_DATETIME_ADAPTER = TypeAdapter(datetime)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string, unix epoch or datetime; naive values are taken as UTC"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    try:
        parsed = _DATETIME_ADAPTER.validate_python(value)
    except ValidationError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_device(device: Dict[str, Any]) -> Optional[RawFix]:
    """
    Convert one device record into a RawFix.

    Accepts {device_id|id, plate_number, last_lat, last_lon, last_speed,
    last_update}. Returns None if the record is unusable.
    """
    vehicle_id = device.get("device_id") or device.get("id")
    if vehicle_id is None or str(vehicle_id).strip() == "":
        log_fix_skipped("unknown", "record has no device id")
        return None
    vehicle_id = str(vehicle_id)

    lat = _to_float(device.get("last_lat"))
    lon = _to_float(device.get("last_lon"))
    if lat is None or lon is None:
        log_fix_skipped(vehicle_id, "missing GPS coordinates")
        return None

    observed_at = _parse_timestamp(device.get("last_update"))
    if observed_at is None:
        log_fix_skipped(vehicle_id, f"invalid timestamp {device.get('last_update')!r}")
        return None

    speed = _to_float(device.get("last_speed"))
    if speed is not None and speed < 0:
        speed = None

    try:
        return RawFix(
            vehicle_id=vehicle_id,
            plate_label=device.get("plate_number") or f"Bus {vehicle_id}",
            lat=lat,
            lon=lon,
            speed_kmh=speed,
            observed_at=observed_at,
        )
    except ValidationError as e:
        log_fix_skipped(vehicle_id, f"validation failed: {e.error_count()} error(s)")
        return None


def normalize_devices(devices: List[Dict[str, Any]]) -> List[RawFix]:
    fixes = []
    for device in devices:
        if not isinstance(device, dict):
            log_fix_skipped("unknown", f"unexpected record type {type(device).__name__}")
            continue
        fix = normalize_device(device)
        if fix is not None:
            fixes.append(fix)
    return fixes


class LiveDeviceSource:
    """Fetches the fleet from the live telemetry endpoint"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.DEVICE_API_URL
        self.timeout = timeout or settings.DEVICE_API_TIMEOUT
        self._transport = transport

    async def fetch_devices(self) -> List[Dict[str, Any]]:
        """
        Fetch raw device records.

        Raises:
            FixSourceError: On timeout, HTTP error or unexpected payload
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            raise FixSourceError(f"Device API timeout (>{self.timeout}s)")
        except httpx.HTTPStatusError as e:
            raise FixSourceError(f"Device API error (HTTP {e.response.status_code})")
        except httpx.HTTPError as e:
            raise FixSourceError(f"Device API request failed: {type(e).__name__}")
        except ValueError:
            raise FixSourceError("Device API returned invalid JSON")

        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("data"), list):
            raise FixSourceError("Unexpected response structure from device API")

        logger.debug(f"Fetched {len(data['data'])} devices from device API")
        return data["data"]

    async def fetch_fixes(self) -> List[RawFix]:
        return normalize_devices(await self.fetch_devices())


# Dummy route presets: start far from the destination for realistic ETAs
DUMMY_ROUTES = [
    {"start": (-1.8800, 30.0500), "end": (-1.9700, 30.0700), "plate_number": "RAA 123A"},
    {"start": (-1.9500, 29.9800), "end": (-1.9400, 30.0900), "plate_number": "RAA 456B"},
    {"start": (-1.9000, 30.0000), "end": (-1.9600, 30.0800), "plate_number": "RAA 789C"},
]

DUMMY_MAX_SPEED = 80.0  # km/h
DUMMY_ACCELERATION = 40.0  # km/h per 10 seconds
DUMMY_DECELERATION = 35.0  # km/h per 10 seconds
DUMMY_STOP_PROBABILITY = 0.02
DUMMY_STOP_DURATION = 10.0  # seconds
DUMMY_GPS_NOISE = 0.00005  # degrees, ~5 meters


@dataclass
class DummyBusState:
    start_lat: float
    start_lon: float
    target_lat: float
    target_lon: float
    plate_number: str
    progress: float = 0.0
    speed: float = 40.0
    is_moving: bool = True
    stop_time: float = 0.0
    last_update: Optional[datetime] = None


class DummyGPSSource:
    """Synthetic fleet moving along straight routes with random stops"""

    def __init__(
        self,
        bus_count: Optional[int] = None,
        update_interval: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.bus_count = bus_count if bus_count is not None else settings.DUMMY_BUS_COUNT
        self.update_interval = update_interval or settings.DUMMY_UPDATE_INTERVAL
        self._rng = rng or random.Random()
        self._states: Dict[str, DummyBusState] = {}

    def reset(self):
        self._states.clear()

    def _state_for(self, index: int) -> DummyBusState:
        device_id = f"BUS{index + 1:03d}"
        if device_id not in self._states:
            route = DUMMY_ROUTES[index % len(DUMMY_ROUTES)]
            self._states[device_id] = DummyBusState(
                start_lat=route["start"][0],
                start_lon=route["start"][1],
                target_lat=route["end"][0],
                target_lon=route["end"][1],
                plate_number=route["plate_number"],
            )
        return self._states[device_id]

    def _advance(self, state: DummyBusState, elapsed: float):
        """Move one simulated bus forward by elapsed seconds"""
        if not state.is_moving and state.stop_time > 0:
            state.stop_time -= elapsed
            if state.stop_time <= 0:
                state.is_moving = True
                state.speed = 10.0
            return

        if state.is_moving and state.speed > 5 and self._rng.random() < DUMMY_STOP_PROBABILITY:
            state.is_moving = False
            state.stop_time = DUMMY_STOP_DURATION + self._rng.random() * 10
            state.speed = 0.0
            return

        if state.is_moving:
            state.speed = min(DUMMY_MAX_SPEED, state.speed + DUMMY_ACCELERATION * elapsed / 10)
        else:
            state.speed = max(0.0, state.speed - DUMMY_DECELERATION * elapsed / 10)

        if not state.is_moving or state.speed <= 0:
            return

        distance_moved = state.speed / 3.6 * elapsed
        lat_mid = math.radians((state.start_lat + state.target_lat) / 2)
        lat_distance = abs(state.target_lat - state.start_lat) * 111000
        lon_distance = abs(state.target_lon - state.start_lon) * 111000 * math.cos(lat_mid)
        route_distance = math.hypot(lat_distance, lon_distance)

        if route_distance > 0:
            state.progress = max(0.0, min(1.0, state.progress + distance_moved / route_distance))

        if state.progress >= 1:
            # Journey complete, restart from the beginning of the route
            logger.info(f"Dummy bus {state.plate_number} completed journey, restarting")
            state.progress = 0.0
            state.speed = 40.0
            state.is_moving = True

    def generate(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Produce one round of device records in the live API format"""
        now = now or datetime.now(timezone.utc)
        devices = []

        for i in range(self.bus_count):
            state = self._state_for(i)

            elapsed = self.update_interval
            if state.last_update is not None:
                elapsed = (now - state.last_update).total_seconds()
                if elapsed <= 0 or elapsed > self.update_interval * 2:
                    elapsed = self.update_interval

            self._advance(state, elapsed)

            lat = state.start_lat + (state.target_lat - state.start_lat) * state.progress
            lon = state.start_lon + (state.target_lon - state.start_lon) * state.progress

            devices.append({
                "device_id": f"BUS{i + 1:03d}",
                "plate_number": state.plate_number,
                "last_lat": lat + (self._rng.random() - 0.5) * DUMMY_GPS_NOISE,
                "last_lon": lon + (self._rng.random() - 0.5) * DUMMY_GPS_NOISE,
                "last_speed": state.speed,
                "last_update": now.isoformat(),
            })
            state.last_update = now

        return devices

    async def fetch_devices(self) -> List[Dict[str, Any]]:
        devices = self.generate()
        moving = sum(1 for d in devices if d["last_speed"] > 0)
        logger.debug(f"Dummy GPS: {moving}/{len(devices)} buses moving")
        return devices

    async def fetch_fixes(self) -> List[RawFix]:
        return normalize_devices(await self.fetch_devices())


def create_fix_source():
    """Build the fix source selected by USE_DUMMY_GPS"""
    if settings.USE_DUMMY_GPS:
        return DummyGPSSource()
    return LiveDeviceSource()
