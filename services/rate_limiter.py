"""
API Rate Limiter Service - Controls outbound request rates per user
Fixed-window counters keyed by (identifier, API path)
"""

import math
import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from config import Config
from utils.exception_handler import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class RateLimitStatus:
    limited: bool
    limit: int
    remaining: int
    reset_at: float


class ApiRateLimiter:
    """Rate limiter for outbound API calls"""

    def __init__(
        self,
        limits: Optional[Dict[str, Tuple[int, int]]] = None,
        default_limit: Optional[Tuple[int, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter with configurable limits

        Args:
            limits: path -> (max requests, window seconds); defaults from config
            default_limit: budget for paths without their own entry
            clock: time source, injectable for tests
        """
        self.limits = dict(Config.RATE_LIMITS if limits is None else limits)
        self.default_limit = default_limit or Config.DEFAULT_RATE_LIMIT
        self._clock = clock
        # (identifier, path) -> [count, reset_at]
        self._windows: Dict[Tuple[str, str], list] = {}
        self._next_prune = clock() + self.longest_window()

    def limit_for(self, path: str) -> Tuple[int, int]:
        return self.limits.get(path, self.default_limit)

    def longest_window(self) -> int:
        return max([window for _, window in self.limits.values()] + [self.default_limit[1]])

    def _prune(self, now: float) -> None:
        """Forget windows that have elapsed; users who stop calling leave nothing behind"""
        for key in [key for key, window in self._windows.items() if window[1] <= now]:
            del self._windows[key]
        self._next_prune = now + self.longest_window()

    def check(self, identifier, path: str) -> RateLimitStatus:
        """
        Count one request against the window and report whether it is allowed.

        The window starts with the first request and resets once it elapses.
        """
        limit, window_seconds = self.limit_for(path)
        key = (str(identifier), path)
        now = self._clock()
        if now >= self._next_prune:
            self._prune(now)

        window = self._windows.get(key)
        if window is None or window[1] <= now:
            window = [0, now + window_seconds]
            self._windows[key] = window

        window[0] += 1
        return RateLimitStatus(
            limited=window[0] > limit,
            limit=limit,
            remaining=max(0, limit - window[0]),
            reset_at=window[1],
        )

    def acquire(self, identifier, path: str) -> None:
        """Raise RateLimited when the request would exceed the budget"""
        status = self.check(identifier, path)
        if status.limited:
            retry_after = max(1, math.ceil(status.reset_at - self._clock()))
            logger.warning(
                f"🚦 RATE_LIMITED: id={identifier} path={path} limit={status.limit} reset_in={retry_after}s"
            )
            raise RateLimited(retry_after)

