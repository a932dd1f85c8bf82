"""
Client-side request rate limiter.

WHAT: Spacing between requests plus an hourly cap
WHY: Stay under provider quotas before the provider has to reject us
HOW: Deque of request timestamps pruned to the last hour
"""

import asyncio
import time
from collections import deque
from typing import Callable

from .exceptions import ClientError

HOUR = 3600.0


class RateLimiter:
    """Limits request frequency for one provider."""

    def __init__(
        self,
        interval: float = 0.0,
        max_per_hour: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            interval: Minimum seconds between consecutive requests (0 = off)
            max_per_hour: Maximum requests in any rolling hour (0 = off)
            clock: Monotonic time source (injectable for tests)
        """
        self.interval = interval
        self.max_per_hour = max_per_hour
        self._clock = clock
        self.requests: deque = deque()

    def _clean_old_requests(self) -> None:
        cutoff = self._clock() - HOUR
        while self.requests and self.requests[0] < cutoff:
            self.requests.popleft()

    async def check_limit(self) -> None:
        """
        Wait out the minimum interval, or fail when the hourly cap is hit.

        Raises:
            ClientError: (api, 429) when max_per_hour requests were made in the last hour
        """
        self._clean_old_requests()
        now = self._clock()

        if self.max_per_hour and len(self.requests) >= self.max_per_hour:
            wait_time = HOUR - (now - self.requests[0])
            raise ClientError.api(
                "Hourly rate limit exceeded",
                429,
                {"retry_after": round(wait_time), "limit": self.max_per_hour},
                retry_after=wait_time,
            )

        if self.interval and self.requests:
            elapsed = now - self.requests[-1]
            if elapsed < self.interval:
                await asyncio.sleep(self.interval - elapsed)

    def record_request(self) -> None:
        self.requests.append(self._clock())

    def reset(self) -> None:
        self.requests.clear()
