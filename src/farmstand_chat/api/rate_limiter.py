"""Per-party sliding window rate limiting."""

import asyncio
import time
from typing import Dict, List, Optional

from fastapi import Request
from structlog import get_logger

from ..services.identity import PARTY_HEADER

logger = get_logger()


class RateLimitExceeded(Exception):
    """Raised when a caller exceeds its request budget."""

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """Sliding window limiter keyed by caller and path."""

    def __init__(self, rate_limit: int = 120, time_window: int = 60):
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.info(
            "rate_limiter_initialized",
            rate_limit=rate_limit,
            time_window=time_window
        )

    async def start(self):
        """Start the periodic cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self):
        """Stop the periodic cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff_time = now - self.time_window
        timestamps = [ts for ts in self.requests.get(key, []) if ts > cutoff_time]
        if timestamps:
            self.requests[key] = timestamps
        else:
            self.requests.pop(key, None)
        return timestamps

    async def _periodic_cleanup(self):
        """Drop timestamps that left the window."""
        while True:
            try:
                await asyncio.sleep(self.time_window)
                async with self._lock:
                    now = time.monotonic()
                    for key in list(self.requests.keys()):
                        self._prune(key, now)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("rate_limiter_cleanup_error", error=str(e))

    async def check_rate_limit(self, key: str) -> None:
        """Record a request for ``key`` or raise RateLimitExceeded."""
        now = time.monotonic()
        async with self._lock:
            timestamps = self._prune(key, now)
            if len(timestamps) >= self.rate_limit:
                retry_after = max(1, int(timestamps[0] + self.time_window - now))
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(timestamps),
                    rate_limit=self.rate_limit
                )
                raise RateLimitExceeded(
                    f"Rate limit of {self.rate_limit} requests per {self.time_window} seconds exceeded",
                    retry_after=retry_after,
                )
            timestamps.append(now)
            self.requests[key] = timestamps

    async def get_remaining_requests(self, key: str) -> int:
        async with self._lock:
            return max(0, self.rate_limit - len(self._prune(key, time.monotonic())))


def rate_limit_key(request: Request) -> str:
    """Authenticated callers are limited per party, anonymous ones per address."""
    caller = request.headers.get(PARTY_HEADER)
    if not caller:
        caller = request.client.host if request.client else "unknown"
    return f"{caller}:{request.url.path}"
