"""
QuizMarket Attempt Service
Shared helper functions
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from ...config import get_settings, get_database_url

__all__ = ["setup_logging", "utcnow", "isoformat", "format_duration", "get_database_url"]


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging from the application settings"""
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), handlers=[handler], force=True)

    # Keep SQL echo out of application logs unless asked for
    if not settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _units(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_duration(seconds: Optional[int]) -> str:
    """Human readable duration, e.g. ``"2 minutes 5 seconds"`` or ``"1 hour 30 minutes"``"""
    seconds = max(0, int(seconds or 0))
    if seconds < 60:
        return _units(seconds, "second")

    minutes, remainder = divmod(seconds, 60)
    if minutes < 60:
        if remainder:
            return f"{_units(minutes, 'minute')} {_units(remainder, 'second')}"
        return _units(minutes, "minute")

    hours, minutes = divmod(minutes, 60)
    if minutes:
        return f"{_units(hours, 'hour')} {_units(minutes, 'minute')}"
    return _units(hours, "hour")
