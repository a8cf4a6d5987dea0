"""
Centralized logging configuration for the tracker.
Logs to both console and rotating file.
"""

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from datetime import datetime

from fleet_eta.core.config import settings

# Create logs directory if it doesn't exist
LOGS_DIR = Path(settings.LOG_DIR)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Log file path with date
LOG_FILE = LOGS_DIR / f"fleet_eta_{datetime.now().strftime('%Y%m%d')}.log"


def setup_logger(name: str = "fleet_eta") -> logging.Logger:
    """
    Setup and configure application logger.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (rotating, max 10MB per file, keep 5 backups)
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


# Create default logger instance
logger = setup_logger()


def log_error(context: str, error: Exception):
    """Log error with full traceback"""
    logger.error(f"Error: {context} - {type(error).__name__}: {str(error)}", exc_info=True)


def log_warning(context: str, message: str):
    """Log warning"""
    logger.warning(f"Warning: {context} - {message}")


def log_fix_skipped(vehicle_id: str, reason: str):
    """Log a raw fix that could not be used this cycle"""
    logger.warning(f"Fix skipped: Vehicle {vehicle_id} - {reason}")


def log_provider_request(kind: str, origin: tuple, success: bool, error: str = ""):
    """Log routing provider requests"""
    if success:
        logger.debug(f"Provider Request ({kind}): Origin {origin} - Success")
    else:
        logger.warning(f"Provider Request ({kind}): Origin {origin} - Failed: {error}")


def log_api_stats(eta_calls: int, route_calls: int, elapsed_minutes: float):
    """Log provider call counters for the last reporting window"""
    logger.info(
        f"API Stats: ETA {eta_calls} calls, Route {route_calls} calls "
        f"in last {elapsed_minutes:.1f} min"
    )
