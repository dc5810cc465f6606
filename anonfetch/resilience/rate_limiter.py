"""Per-host sliding window throttler.

Enforces a minimum spacing between requests to the same destination host.
Each configured host gets a ring buffer holding the timestamps of its last
``max_requests`` requests; a new request is admitted once the oldest of them
is at least ``max_seconds`` old.

Key behaviors:
- Host lookup matches the rule host itself and any of its subdomains; the
  longest matching rule wins
- Unmatched hosts fall back to an unthrottled ``default`` window
- acquire() blocks (async sleep) until the window admits the request, then
  records it
- Throttling one host does not affect other hosts
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from anonfetch.config.throttle_rules import ThrottleRule

logger = logging.getLogger(__name__)

DEFAULT_HOST = "default"


def host_of(url: str) -> str:
    """Return the lowercase host of *url*, or *url* itself when it has none."""
    host = urlsplit(url).hostname if "//" in url else None
    return (host or url).lower()


@dataclass
class ThrottleWindow:
    """Ring buffer of recent request timestamps for a single host."""

    host: str
    max_seconds: float
    max_requests: int
    history: deque[float] = field(init=False)

    def __post_init__(self) -> None:
        self.host = self.host.lower()
        # Pre-filled so the first max_requests requests are always admitted.
        self.history = deque(
            [float("-inf")] * self.max_requests, maxlen=self.max_requests
        )

    @property
    def is_unthrottled(self) -> bool:
        return self.max_requests <= 0 or self.max_seconds <= 0

    def matches(self, host: str) -> bool:
        """``example.com`` matches ``example.com`` and ``a.example.com``."""
        host = host.lower()
        return host == self.host or host.endswith("." + self.host)

    def record(self, at: float) -> None:
        if self.max_requests > 0:
            self.history.append(at)

    def remaining(self, now: float) -> float:
        if self.is_unthrottled:
            return 0.0
        return max(0.0, self.max_seconds - (now - self.history[0]))


class Throttler:
    """Per-host request throttler.

    Args:
        rules: Mapping of host to ThrottleRule.
        clock: Monotonic time source (seconds).
        sleep: Coroutine used to wait; injectable for tests.
    """

    def __init__(
        self,
        rules: Mapping[str, ThrottleRule] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[str, ThrottleWindow] = {}
        self._default = ThrottleWindow(DEFAULT_HOST, 0, 0)
        self.load_rules(rules or {})

    def load_rules(self, rules: Mapping[str, ThrottleRule]) -> None:
        """Replace all windows with fresh ones built from *rules*."""
        self._windows = {
            host.lower(): ThrottleWindow(host, rule.max_seconds, rule.max_requests)
            for host, rule in rules.items()
            if host.lower() != DEFAULT_HOST
        }
        logger.debug("Throttler configured for %d hosts", len(self._windows))

    def window_for(self, url: str) -> ThrottleWindow:
        """Return the window of the longest rule host matching *url*."""
        host = host_of(url)
        best: ThrottleWindow | None = None
        for window in self._windows.values():
            if window.matches(host) and (best is None or len(window.host) > len(best.host)):
                best = window
        return best or self._default

    def remaining_wait_seconds(self, url: str) -> float:
        return self.window_for(url).remaining(self._clock())

    def is_over_limit(self, url: str) -> bool:
        return self.remaining_wait_seconds(url) > 0

    def record_request(self, url: str, at: float | None = None) -> None:
        """Record a request to *url* at time *at* (defaults to now)."""
        self.window_for(url).record(self._clock() if at is None else at)

    async def acquire(self, url: str) -> None:
        """Block until the window for *url* admits a request, then record it."""
        window = self.window_for(url)
        while True:
            wait = window.remaining(self._clock())
            if wait <= 0:
                break
            logger.info(
                "Throttling %s for %.2fs (%s)",
                host_of(url),
                wait,
                self.info_text(url),
            )
            await self._sleep(wait)
        window.record(self._clock())

    def info_text(self, url: str) -> str:
        window = self.window_for(url)
        if window.is_unthrottled:
            return f"{window.host}: unthrottled"
        return (
            f"{window.host}: max {window.max_requests} requests / "
            f"{window.max_seconds:g}s, wait {window.remaining(self._clock()):.2f}s"
        )
