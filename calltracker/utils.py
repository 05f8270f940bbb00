"""
Utility functions for the Call Tracker API.
"""

import hmac
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

PHONE_NUMBER_RE = re.compile(r"^\+?[0-9]+$")

# E.164 caps a number at 15 digits
MAX_PHONE_DIGITS = 15


def is_valid_phone_number(number: Optional[str]) -> bool:
    """Digits only, with an optional leading '+'."""
    if not isinstance(number, str):
        return False
    return PHONE_NUMBER_RE.fullmatch(number) is not None


def phone_number_digits(number: str) -> int:
    return len(number.lstrip("+"))


def format_duration(seconds: int) -> str:
    """
    Render a duration as "1h 2m 3s".

    Zero hour and minute parts are left out, seconds are always shown.
    Non-positive durations render as "0s".
    """
    if seconds <= 0:
        return "0s"

    hours, remainder = divmod(seconds, 3600)
    minutes, remaining_seconds = divmod(remainder, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{remaining_seconds}s")

    return " ".join(parts)


def verify_api_key(provided: Optional[str], expected: str) -> bool:
    """
    Check the X-API-Key header value against API_SECRET_KEY.

    Args:
        provided: Header value (None if the header was absent)
        expected: Configured API_SECRET_KEY

    Returns:
        True if the key matches, False otherwise
    """
    if not provided or not expected:
        logger.info("API key missing or not configured")
        return False

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
    logger.debug(f"API key verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
