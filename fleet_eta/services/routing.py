"""
Routing provider clients for ETA and route path lookups.

Two interchangeable clients are provided:
- OSRMRoutingClient: OSRM Route API (default)
- GoogleMapsRoutingClient: Google Distance Matrix + Directions APIs

Both expose the same two coroutines:
- get_eta(...) -> RouteResult with duration/distance (None values on failure)
- get_route(...) -> RouteResult with the path, falling back to a
  straight [origin, destination] line (source "fallback")

Neither raises on provider errors; the pipeline still guards every call
with a timeout in case a transport hangs.
"""

import httpx
from typing import List, Optional, Tuple

from fleet_eta.core.config import settings
from fleet_eta.core.logger import logger, log_provider_request
from fleet_eta.core.polyline import decode_polyline
from fleet_eta.schemas.tracking import Coordinate, RouteResult


def _fallback_route(origin_lat: float, origin_lon: float,
                    dest_lat: float, dest_lon: float) -> RouteResult:
    return RouteResult(
        path=[
            Coordinate(lat=origin_lat, lng=origin_lon),
            Coordinate(lat=dest_lat, lng=dest_lon),
        ],
        source="fallback",
    )


def _failed_result() -> RouteResult:
    return RouteResult(duration_seconds=None, distance_meters=None, source="fallback")


def _optional_float(value) -> Optional[float]:
    return float(value) if value is not None else None


class OSRMRoutingClient:
    """Client for the OSRM routing API"""

    name = "osrm"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        profile: str = "driving",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.OSRM_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.profile = profile
        self._transport = transport

    def _build_coords_string(self, coords: List[Tuple[float, float]]) -> str:
        # OSRM expects lon,lat format
        return ";".join([f"{lon},{lat}" for lat, lon in coords])

    async def _fetch_route(self, origin: Tuple[float, float],
                           destination: Tuple[float, float], params: dict) -> Optional[dict]:
        """Return the first OSRM route object, or None if OSRM has no answer."""
        coords_str = self._build_coords_string([origin, destination])
        url = f"{self.base_url}/route/v1/{self.profile}/{coords_str}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()

        if data.get("code") != "Ok":
            raise ValueError(data.get("message", "No route found"))
        if not data.get("routes"):
            raise ValueError("No routes returned")
        return data["routes"][0]

    async def get_eta(self, origin_lat: float, origin_lon: float,
                      dest_lat: float, dest_lon: float) -> RouteResult:
        """
        Get travel duration and distance from origin to destination.

        Returns:
            RouteResult; duration/distance are None if OSRM fails
        """
        origin = (origin_lat, origin_lon)
        try:
            route = await self._fetch_route(origin, (dest_lat, dest_lon), {"overview": "false"})
        except httpx.TimeoutException:
            log_provider_request("eta", origin, success=False, error="Timeout")
            return _failed_result()
        except httpx.HTTPStatusError as e:
            log_provider_request("eta", origin, success=False, error=f"HTTP {e.response.status_code}")
            return _failed_result()
        except (httpx.HTTPError, ValueError, KeyError) as e:
            log_provider_request("eta", origin, success=False, error=str(e))
            return _failed_result()

        log_provider_request("eta", origin, success=True)
        return RouteResult(
            duration_seconds=float(route["duration"]),
            distance_meters=float(route["distance"]),
            source="osrm",
        )

    async def get_route(self, origin_lat: float, origin_lon: float,
                        dest_lat: float, dest_lon: float) -> RouteResult:
        """
        Get the route geometry from origin to destination.

        Returns:
            RouteResult with the ordered path; a straight [origin, destination]
            fallback (source "fallback") on any failure
        """
        origin = (origin_lat, origin_lon)
        try:
            route = await self._fetch_route(
                origin,
                (dest_lat, dest_lon),
                {"overview": "full", "geometries": "polyline"},
            )
        except (httpx.HTTPError, ValueError, KeyError) as e:
            log_provider_request("route", origin, success=False, error=str(e) or type(e).__name__)
            return _fallback_route(origin_lat, origin_lon, dest_lat, dest_lon)

        points = decode_polyline(route.get("geometry") or "")
        if not points:
            logger.warning("OSRM route had no usable geometry, using straight-line path")
            return _fallback_route(origin_lat, origin_lon, dest_lat, dest_lon)

        log_provider_request("route", origin, success=True)
        return RouteResult(
            duration_seconds=_optional_float(route.get("duration")),
            distance_meters=_optional_float(route.get("distance")),
            path=[Coordinate(lat=lat, lng=lon) for lat, lon in points],
            source="osrm",
        )


class GoogleMapsRoutingClient:
    """Client for the Google Distance Matrix and Directions APIs"""

    name = "google"

    DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
    DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    async def _get_json(self, url: str, params: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url, params={**params, "key": self.api_key})
            response.raise_for_status()
            return response.json()

    async def get_eta(self, origin_lat: float, origin_lon: float,
                      dest_lat: float, dest_lon: float) -> RouteResult:
        """Travel duration (in current traffic when available) and distance"""
        origin = (origin_lat, origin_lon)
        if not self.api_key:
            logger.warning("Google Maps API key not configured, cannot calculate ETA")
            return _failed_result()

        params = {
            "origins": f"{origin_lat},{origin_lon}",
            "destinations": f"{dest_lat},{dest_lon}",
            "mode": "driving",
            "departure_time": "now",
        }
        try:
            data = await self._get_json(self.DISTANCE_MATRIX_URL, params)
        except httpx.HTTPError as e:
            log_provider_request("eta", origin, success=False, error=str(e) or type(e).__name__)
            return _failed_result()

        if data.get("status") != "OK":
            log_provider_request("eta", origin, success=False, error=data.get("error_message", data.get("status")))
            return _failed_result()

        try:
            element = data["rows"][0]["elements"][0]
        except (KeyError, IndexError):
            log_provider_request("eta", origin, success=False, error="Empty distance matrix")
            return _failed_result()

        if element.get("status") != "OK":
            log_provider_request("eta", origin, success=False, error=element.get("status"))
            return _failed_result()

        duration = (element.get("duration_in_traffic") or element.get("duration") or {}).get("value")
        distance = (element.get("distance") or {}).get("value")

        log_provider_request("eta", origin, success=True)
        return RouteResult(
            duration_seconds=_optional_float(duration),
            distance_meters=_optional_float(distance),
            source="google",
        )

    async def get_route(self, origin_lat: float, origin_lon: float,
                        dest_lat: float, dest_lon: float) -> RouteResult:
        """Best driving route geometry; straight-line fallback result on any failure"""
        origin = (origin_lat, origin_lon)
        if not self.api_key:
            logger.warning("Google Maps API key not configured, cannot fetch route")
            return _fallback_route(origin_lat, origin_lon, dest_lat, dest_lon)

        params = {
            "origin": f"{origin_lat},{origin_lon}",
            "destination": f"{dest_lat},{dest_lon}",
            "mode": "driving",
            "alternatives": "false",
        }
        try:
            data = await self._get_json(self.DIRECTIONS_URL, params)
        except httpx.HTTPError as e:
            log_provider_request("route", origin, success=False, error=str(e) or type(e).__name__)
            return _fallback_route(origin_lat, origin_lon, dest_lat, dest_lon)

        routes = data.get("routes") or []
        if data.get("status") != "OK" or not routes:
            log_provider_request("route", origin, success=False, error=data.get("status", "No routes"))
            return _fallback_route(origin_lat, origin_lon, dest_lat, dest_lon)

        route = routes[0]
        points = decode_polyline((route.get("overview_polyline") or {}).get("points", ""))
        if not points:
            return _fallback_route(origin_lat, origin_lon, dest_lat, dest_lon)

        legs = route.get("legs") or [{}]
        log_provider_request("route", origin, success=True)
        return RouteResult(
            duration_seconds=_optional_float((legs[0].get("duration") or {}).get("value")),
            distance_meters=_optional_float((legs[0].get("distance") or {}).get("value")),
            path=[Coordinate(lat=lat, lng=lon) for lat, lon in points],
            source="google",
        )


def create_routing_client(provider: Optional[str] = None):
    """Build the routing client selected by ROUTING_PROVIDER"""
    provider = (provider or settings.ROUTING_PROVIDER).strip().lower()
    if provider == "google":
        return GoogleMapsRoutingClient()
    if provider != "osrm":
        logger.warning(f"Unknown routing provider '{provider}', using OSRM")
    return OSRMRoutingClient()
