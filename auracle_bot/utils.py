"""
Utility functions for the Auracle market bot.

This module provides shared helper utilities used across the codebase.
All functions are pure helpers with no domain logic.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

# Configure module logger
logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"\d+(?:\.\d+)?")

_CLOSE_TIME_PATTERN = re.compile(
    r"(January|February|March|April|May|June|July|August|September|October|November|December)"
    r"\s+\d{1,2},\s*\d{4}\s+at\s+\d{1,2}:\d{2}\s*(AM|PM)",
    re.IGNORECASE
)


def current_utc_timestamp() -> str:
    """
    Get current UTC timestamp as ISO 8601 string.

    Returns:
        ISO 8601 formatted timestamp string (e.g., "2024-01-15T10:30:45.123456+00:00")
    """
    return datetime.now(timezone.utc).isoformat()


def clamp(value: float, min_value: float, max_value: float) -> float:
    """
    Clamp a value between minimum and maximum bounds.

    Args:
        value: Value to clamp
        min_value: Minimum allowed value
        max_value: Maximum allowed value

    Returns:
        Clamped value between min_value and max_value

    Raises:
        ValueError: If min_value > max_value
    """
    if min_value > max_value:
        raise ValueError(f"min_value ({min_value}) must be <= max_value ({max_value})")

    return max(min_value, min(value, max_value))


def safe_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """
    Extract an integer from a value such as "55%", "55.5%" or " 7 ".

    Args:
        value: Value to convert (string, int, float, or None)
        default: Default value if conversion fails

    Returns:
        Leading number rounded to an integer, or default if there is none
    """
    if value is None:
        return default

    if isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        try:
            return int(round(value))
        except (ValueError, OverflowError):
            return default

    match = _NUMBER.search(str(value))
    if not match:
        return default
    return int(round(float(match.group(0))))


def extract_market_id(url: Optional[str]) -> Optional[str]:
    """
    Extract the market identifier from a market URL.

    The identifier is the "id" query parameter of a MarketDetails URL, or
    the last path segment of a /market/<id> style URL.

    Args:
        url: Absolute or relative market URL

    Returns:
        Market id, or None when the URL carries none
    """
    if not url:
        return None

    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    values = parse_qs(parsed.query).get("id")
    if values and values[0].strip():
        return values[0].strip()

    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) >= 2 and segments[-2].lower() in ("market", "markets", "marketdetails"):
        return segments[-1]

    return None


def parse_close_time(text: Optional[str]) -> Optional[str]:
    """
    Find a "Month D, YYYY at H:MM AM" date in page text.

    The page shows times without a zone; they are treated as UTC.

    Args:
        text: Page text to search

    Returns:
        ISO 8601 UTC timestamp, or None when no date is found
    """
    if not text:
        return None

    match = _CLOSE_TIME_PATTERN.search(text)
    if not match:
        return None

    raw = re.sub(r"\s+", " ", match.group(0))
    raw = re.sub(r"(\d)(AM|PM)$", r"\1 \2", raw, flags=re.IGNORECASE)
    raw = re.sub(r",\s*", ", ", raw)

    try:
        parsed = datetime.strptime(raw, "%B %d, %Y at %I:%M %p")
    except ValueError:
        logger.debug(f"Could not parse close time: {raw}")
        return None

    return parsed.replace(tzinfo=timezone.utc).isoformat()


def format_ends_in(close_time: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """
    Describe the time left until a close time.

    Args:
        close_time: ISO 8601 timestamp
        now: Reference time (default: current UTC time)

    Returns:
        Text such as "in about 3 hours", or None if the time has passed
        or cannot be parsed
    """
    if not close_time:
        return None

    try:
        closes_at = datetime.fromisoformat(close_time.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None

    if closes_at.tzinfo is None:
        closes_at = closes_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    seconds = (closes_at - now).total_seconds()
    if seconds <= 0:
        return None

    minutes = int(seconds // 60)
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"in about {days} days"
    if hours > 0:
        return f"in about {hours} hours"
    if minutes > 0:
        return f"in about {minutes} minutes"
    return None
