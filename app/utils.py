"""
Utility functions for the dispatcher.
"""

import logging
import re
import time
from typing import Optional

logger = logging.getLogger(__name__)

# International format: leading +, no leading zero, at most 15 digits
MSISDN_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_valid_msisdn(value: str) -> bool:
    """Check a destination address against the international phone format."""
    return bool(MSISDN_PATTERN.match(value))


def truncate_content(content: str, limit: int) -> str:
    """
    Cut message content down to at most `limit` characters.

    Already-short content is returned unchanged, so applying it twice is a no-op.
    """
    if len(content) > limit:
        logger.debug(f"Truncating content from {len(content)} to {limit} characters")
        return content[:limit]
    return content


class Deadline:
    """
    Absolute point in time after which an operation must give up.

    Backed by the monotonic clock so wall-clock adjustments do not
    shorten or extend it.
    """

    def __init__(self, expires_at: float):
        self.expires_at = expires_at

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        """Create a deadline `seconds` from now."""
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        """Seconds left before expiry, never negative."""
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def bound(self, timeout: Optional[float]) -> float:
        """Clamp a timeout so it does not outlive this deadline."""
        remaining = self.remaining()
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.3f}s)"
