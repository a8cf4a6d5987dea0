from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime, timezone


# ============ Common Schemas ============

class Coordinate(BaseModel):
    """Position or path point"""
    lat: float = Field(..., description="Latitude")
    lng: float = Field(..., description="Longitude")


class Destination(BaseModel):
    """Fixed tracking target"""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., description="Latitude")
    lon: float = Field(..., description="Longitude")


# ============ Raw Fixes ============

class RawFix(BaseModel):
    """One normalized telemetry sample for a vehicle"""
    model_config = ConfigDict(frozen=True)

    vehicle_id: str = Field(..., description="Device identifier")
    plate_label: str = Field(..., description="Display label (plate number)")
    lat: float = Field(..., description="Latitude")
    lon: float = Field(..., description="Longitude")
    speed_kmh: Optional[float] = Field(None, ge=0, description="Speed in km/h, None if unknown")
    observed_at: datetime = Field(..., description="Time the fix was recorded (UTC)")

    @field_validator("observed_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Naive timestamps are taken as UTC"""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# ============ Routing ============

class RouteResult(BaseModel):
    """Routing provider answer for one origin/destination pair"""
    duration_seconds: Optional[float] = Field(None, description="Travel time, None on failure")
    distance_meters: Optional[float] = Field(None, description="Travel distance, None on failure")
    path: List[Coordinate] = Field(default_factory=list, description="Ordered route geometry, empty for ETA-only lookups")
    source: Literal["osrm", "google", "fallback"] = Field(
        default="osrm",
        description="Source of the estimate"
    )

    @property
    def failed(self) -> bool:
        return self.duration_seconds is None


# ============ Output Payloads ============

class ETAPayload(BaseModel):
    """Per-vehicle update emitted every polling cycle"""
    vehicle_id: str
    plate_label: str
    position: Coordinate
    speed: float = Field(..., ge=0, description="Smoothed speed in km/h")
    eta: Optional[int] = Field(None, description="ETA rounded to minutes")
    eta_seconds: Optional[float] = Field(None, ge=0, description="Smoothed ETA in seconds")
    status: Literal["normal", "traffic", "faster", "stopped", "arrived", "offline"]
    status_message: str
    path: List[Coordinate] = Field(default_factory=list)
    is_moving: bool = False
    last_fix_timestamp: datetime
    timestamp: datetime = Field(..., description="Emission time")


class FleetSnapshot(BaseModel):
    """Full fleet state broadcast after every cycle"""
    timestamp: Optional[datetime] = None
    count: int = 0
    vehicles: List[ETAPayload] = Field(default_factory=list)


# ============ Notifications ============

class NotificationRegisterRequest(BaseModel):
    """Request schema for /register-notification"""
    vehicle_id: str = Field(..., min_length=1)
    notification_minutes: int = Field(..., ge=1, description="Notify when ETA drops to this many minutes")
    push_token: str = Field(..., min_length=1)


class NotificationUnregisterRequest(BaseModel):
    """Request schema for /unregister-notification"""
    vehicle_id: str = Field(..., min_length=1)
    push_token: str = Field(..., min_length=1)


class TrackingStatusResponse(BaseModel):
    """Tracker state returned by the start/stop endpoints"""
    running: bool
    poll_interval_seconds: float
    last_fetched_at: Optional[datetime] = None
    last_fetch_error: Optional[str] = None
    destination: Destination
