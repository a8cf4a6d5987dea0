"""
Per-vehicle cache of routing results.

One entry per (vehicle_id, destination). Entries are created lazily on the
first fix, updated in place on every refresh and never expired.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fleet_eta.schemas.tracking import Coordinate, Destination


@dataclass
class VehicleCacheEntry:
    """Last known routing state for one vehicle"""
    eta_seconds: Optional[float] = None
    previous_eta_seconds: Optional[float] = None
    path: List[Coordinate] = field(default_factory=list)
    eta_refreshed_at: Optional[datetime] = None
    route_refreshed_at: Optional[datetime] = None
    last_position: Optional[Coordinate] = None

    def store_eta(self, eta_seconds: Optional[float], now: datetime) -> bool:
        """
        Record a fresh provider ETA.

        A None ETA (provider failure) leaves the cached value in place.
        Returns True if the entry was updated.
        """
        if eta_seconds is None:
            return False
        self.previous_eta_seconds = self.eta_seconds
        self.eta_seconds = max(0.0, float(eta_seconds))
        self.eta_refreshed_at = now
        return True

    def store_path(self, path: List[Coordinate], now: datetime) -> bool:
        """Record a fresh route path. Empty paths never replace a cached one."""
        if not path:
            return False
        self.path = list(path)
        self.route_refreshed_at = now
        return True

    def mark_arrived(self):
        self.previous_eta_seconds = self.eta_seconds
        self.eta_seconds = 0.0
        self.path = []


CacheKey = Tuple[str, float, float]


class VehicleCache:
    """Registry of VehicleCacheEntry objects keyed by vehicle and destination"""

    def __init__(self):
        self._entries: Dict[CacheKey, VehicleCacheEntry] = {}

    @staticmethod
    def _key(vehicle_id: str, destination: Destination) -> CacheKey:
        return (vehicle_id, destination.lat, destination.lon)

    def get(self, vehicle_id: str, destination: Destination) -> Optional[VehicleCacheEntry]:
        return self._entries.get(self._key(vehicle_id, destination))

    def get_or_create(self, vehicle_id: str, destination: Destination) -> VehicleCacheEntry:
        key = self._key(vehicle_id, destination)
        entry = self._entries.get(key)
        if entry is None:
            entry = VehicleCacheEntry()
            self._entries[key] = entry
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries
