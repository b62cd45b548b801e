"""
Caller-supplied deadline threaded through adapter calls.
"""

import time
from typing import Optional


class Deadline:
    """
    Absolute deadline on the monotonic clock.

    Usage:
        deadline = Deadline.after(5.0)
        loader.fetch_solar(lat, lng, timeout=deadline.timeout(default=10))
    """

    def __init__(self, expires_at: float):
        self.expires_at = expires_at

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def timeout(self, default: Optional[float] = None) -> float:
        """Seconds an adapter may spend, never more than `default` when given."""
        remaining = self.remaining()
        if default is None:
            return remaining
        return min(default, remaining)


def remaining_timeout(deadline: Optional[Deadline], default: Optional[float] = None) -> Optional[float]:
    """Timeout for the next adapter call, or `default` when there is no deadline."""
    if deadline is None:
        return default
    return deadline.timeout(default)
