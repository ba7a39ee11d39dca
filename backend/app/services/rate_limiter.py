# backend/app/services/rate_limiter.py
"""
Rate limiter for the issue-tracker API.

- Minimum interval between consecutive calls
- Exponential backoff after consecutive errors
- Counters for the sync summary
"""

import asyncio
import time
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from app.config import settings
from app.services.normalization import utc_now

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sequential work-queue gate: N calls, each at least min_interval apart.
    """

    MAX_BACKOFF = 60.0

    def __init__(
        self,
        min_interval: Optional[float] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.min_interval = min_interval if min_interval is not None else settings.GITHUB_MIN_REQUEST_INTERVAL
        self.backoff_base = backoff_base if backoff_base is not None else settings.GITHUB_BACKOFF_BASE
        self._sleep = sleep
        self._clock = clock

        # Request tracking
        self.request_count = 0
        self.error_count = 0
        self.consecutive_errors = 0
        self.total_wait = 0.0
        self.last_request_time: Optional[datetime] = None
        self._last_request_at: Optional[float] = None

    def backoff_delay(self) -> float:
        """Delay owed to consecutive errors: base * 2^(n-1), capped."""
        if self.consecutive_errors <= 0:
            return 0.0
        return min(self.backoff_base * (2 ** (self.consecutive_errors - 1)), self.MAX_BACKOFF)

    async def wait_before_request(self):
        """Wait until the next call is allowed."""
        delay = 0.0
        if self._last_request_at is not None:
            elapsed = self._clock() - self._last_request_at
            delay = max(0.0, self.min_interval - elapsed)

        backoff = self.backoff_delay()
        if backoff > delay:
            logger.warning(
                f"Applying backoff: {self.consecutive_errors} consecutive errors, delay {backoff:.1f}s"
            )
            delay = backoff

        if delay > 0:
            logger.debug(f"Waiting {delay:.2f}s before request...")
            await self._sleep(delay)
            self.total_wait += delay

        self.request_count += 1
        self._last_request_at = self._clock()
        self.last_request_time = utc_now()

    def mark_success(self):
        """Mark last request as successful (reset error counter)"""
        if self.consecutive_errors > 0:
            logger.info(f"Request successful, resetting error counter (was {self.consecutive_errors})")
        self.consecutive_errors = 0

    def mark_error(self, error_type: str = "generic"):
        """Mark last request as failed (increase backoff)"""
        self.consecutive_errors += 1
        self.error_count += 1
        logger.error(
            f"Request failed ({error_type}): "
            f"{self.consecutive_errors} consecutive errors"
        )

    def get_stats(self) -> Dict:
        """Get current rate limiter stats"""
        return {
            "total_requests": self.request_count,
            "total_errors": self.error_count,
            "consecutive_errors": self.consecutive_errors,
            "total_wait_seconds": round(self.total_wait, 3),
            "last_request": self.last_request_time.isoformat() if self.last_request_time else None,
        }
