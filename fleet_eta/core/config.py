from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application configuration settings loaded from .env file"""

    # Application
    APP_NAME: str = "Fleet ETA Tracker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: str = "*"

    # Raw-fix source
    DEVICE_API_URL: str = "https://gofasta.onrender.com/api/devices"
    DEVICE_API_TIMEOUT: float = 10.0
    USE_DUMMY_GPS: bool = False
    DUMMY_BUS_COUNT: int = 3
    DUMMY_UPDATE_INTERVAL: int = 10  # Seconds - expected gap between synthetic fixes
    POLL_INTERVAL_SECONDS: float = 10.0

    # Routing provider ("osrm" or "google")
    ROUTING_PROVIDER: str = "osrm"
    OSRM_BASE_URL: str = "http://router.project-osrm.org"
    GOOGLE_MAPS_API_KEY: str = ""
    PROVIDER_TIMEOUT_SECONDS: float = 5.0
    MAX_CONCURRENT_PROVIDER_CALLS: int = 5

    # Refresh policy
    ETA_REFRESH_INTERVAL_SECONDS: float = 60.0
    ROUTE_REFRESH_INTERVAL_SECONDS: float = 6 * 60 * 60.0
    MIN_DISTANCE_FOR_REFRESH_METERS: float = 100.0
    STATIONARY_DISTANCE_METERS: float = 50.0
    MOVING_SPEED_THRESHOLD_KMH: float = 0.5

    # Classification
    STALE_THRESHOLD_SECONDS: float = 10 * 60.0  # Fixes older than this mark the vehicle offline
    ARRIVAL_RADIUS_METERS: float = 50.0

    # Destination (static for the lifetime of the process)
    DESTINATION_LAT: float = -1.9683524
    DESTINATION_LON: float = 30.0890925

    # Push notifications
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"

    # Startup
    AUTO_START_TRACKING: bool = True

    # Logging
    LOG_DIR: str = "logs"

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated CORS origins to list"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
