"""Rate limiting for token endpoint calls.

Implements a fixed-window counter guarding the token exchange and
refresh requests of a single client instance. State lives in memory
and is not shared across processes.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from snow_auth.logging_config import get_logger
from snow_auth.security import OAuthError

if TYPE_CHECKING:
    from snow_auth.config import Config

logger = get_logger(__name__)

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_SECONDS = 60.0


class RateLimiter:
    """Fixed-window rate limiter.

    Allows at most ``max_requests`` calls per window. The window starts
    at the first call after the previous one expired.

    Example:
        limiter = RateLimiter(max_requests=10, window_seconds=60)

        if limiter.allow():
            # Proceed with request
            ...
        else:
            retry_after = limiter.retry_after()
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_requests: Maximum calls allowed per window
            window_seconds: Window length in seconds
            clock: Monotonic clock returning seconds
        """
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._count = 0
        self._window_start: float | None = None

    def _roll_window(self, now: float) -> None:
        if self._window_start is None or now - self._window_start > self._window_seconds:
            self._count = 0
            self._window_start = now

    def allow(self) -> bool:
        """Record a call if the window has capacity.

        Returns:
            True if the call is allowed, False if the limit is reached
        """
        self._roll_window(self._clock())

        if self._count >= self._max_requests:
            logger.warning(
                "Rate limit exceeded: %d token requests in %.0f seconds",
                self._count,
                self._window_seconds,
            )
            return False

        self._count += 1
        return True

    def retry_after(self) -> float:
        """Seconds until the current window expires (0 if calls are allowed)."""
        if self._window_start is None or self._count < self._max_requests:
            return 0.0
        elapsed = self._clock() - self._window_start
        return max(0.0, self._window_seconds - elapsed)

    def reset(self) -> None:
        """Clear the counter and window."""
        self._count = 0
        self._window_start = None

    @property
    def max_requests(self) -> int:
        """Get configured calls per window."""
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        """Get configured window length."""
        return self._window_seconds


def create_rate_limiter(config: Config) -> RateLimiter:
    """Create a rate limiter from configuration.

    Args:
        config: Application configuration

    Returns:
        Configured RateLimiter instance
    """
    return RateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_seconds,
    )


class RateLimitError(OAuthError):
    """Raised when a token endpoint call is denied by the rate limiter."""

    def __init__(self, message: str, retry_after: float) -> None:
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds until retry is allowed
        """
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, str | float]:
        """Convert to dictionary for display.

        Returns:
            Dictionary with error details
        """
        return {
            "error": "rate_limit_exceeded",
            "message": str(self),
            "retry_after": self.retry_after,
        }
