"""
Sliding-window rate limiter with temporary bans.

Keys are remote IP addresses. A key that sends more than ``max_messages``
frames inside ``window_seconds`` is banned for ``ban_seconds``.

Usage:
    limiter = RateLimiter()
    limiter.track(ip)    # on connect
    if limiter.allow(ip):
        # process frame
    else:
        # close the connection
    limiter.release(ip)  # on disconnect
"""
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict

from skycall.constants import (
    RATE_LIMIT_BAN_SECONDS, RATE_LIMIT_MAX_MESSAGES, RATE_LIMIT_WINDOW_SECONDS
)


class RateLimiter:
    """
    Per-key sliding window of frame timestamps plus a ban deadline table.

    ``clock`` is injectable so tests do not have to sleep through a ban.
    """

    def __init__(self,
                 window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
                 max_messages: int = RATE_LIMIT_MAX_MESSAGES,
                 ban_seconds: float = RATE_LIMIT_BAN_SECONDS,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.window_seconds = window_seconds
        self.max_messages = max_messages
        self.ban_seconds = ban_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._banned_until: Dict[str, float] = {}
        self._open: Dict[str, int] = defaultdict(int)

    def allow(self, key: str) -> bool:
        """
        Record one frame for ``key`` and decide whether it may be processed.

        Returns:
            bool: False if the key is banned or just exceeded its budget.
        """
        now = self._clock()

        ban_deadline = self._banned_until.get(key)
        if ban_deadline is not None:
            if now < ban_deadline:
                return False
            del self._banned_until[key]

        hits = self._hits[key]
        hits.append(now)
        while hits and now - hits[0] > self.window_seconds:
            hits.popleft()

        if len(hits) > self.max_messages:
            self._banned_until[key] = now + self.ban_seconds
            hits.clear()
            return False
        return True

    def is_banned(self, key: str) -> bool:
        return self._banned_until.get(key, 0) > self._clock()

    def track(self, key: str) -> None:
        """Count one more live connection for ``key``."""
        self._open[key] += 1

    def release(self, key: str) -> None:
        """
        Count one connection for ``key`` as closed.

        The sliding window is shared by every connection from the key, so it
        is only dropped once the last of them closes. Active bans are kept;
        expired ones are pruned.
        """
        remaining = self._open.get(key, 0) - 1
        if remaining > 0:
            self._open[key] = remaining
        else:
            self._open.pop(key, None)
            self._hits.pop(key, None)

        now = self._clock()
        for banned, deadline in list(self._banned_until.items()):
            if deadline <= now:
                del self._banned_until[banned]
