"""
Per-caller request limiting for the mutating grade and submission routes.

The limiter is an explicit object owned by the application (see
gradeflow.main.create_app). Routes reach it through the
enforce_rate_limit dependency; grading services never touch it.
"""
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple

from fastapi import Depends, Request

from gradeflow.common.errors import RateLimited
from gradeflow.common.permissions import UserContext, get_current_user

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window counter keyed by caller id"""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key, deque())
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if not hits:
            # idle callers do not keep an entry
            self._hits.pop(key, None)
        return hits

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Record a request for key.

        Returns (allowed, retry_after_seconds). Rejected requests are not
        counted against the window.
        """
        now = self._clock()
        hits = self._prune(key, now)

        if len(hits) >= self.max_requests:
            retry_after = int(self.window_seconds - (now - hits[0])) + 1
            return False, retry_after

        hits.append(now)
        self._hits[key] = hits
        return True, 0

    def remaining(self, key: str) -> int:
        hits = self._prune(key, self._clock())
        return max(self.max_requests - len(hits), 0)

    def reset(self):
        self._hits.clear()


async def enforce_rate_limit(
    request: Request,
    user: UserContext = Depends(get_current_user)
):
    """Dependency: 429 once the caller exhausts the window"""
    limiter: RateLimiter = request.app.state.rate_limiter
    allowed, retry_after = limiter.hit(user.user_id)
    if not allowed:
        logger.warning("Rate limit hit for %s on %s", user.user_id, request.url.path)
        raise RateLimited("Too many requests, please slow down", retry_after=retry_after)
