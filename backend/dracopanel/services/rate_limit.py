"""Fixed-window request limiter keyed by API key id."""
from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(frozen=True)
class RateConfig:
    window_seconds: int
    max_requests: int


class RateLimiter:
    def __init__(self, config: RateConfig) -> None:
        self._window = float(max(1, config.window_seconds))
        self._max_requests = max(1, config.max_requests)
        # key -> (window_reset_epoch_s, count)
        self._buckets: dict[str, tuple[float, int]] = {}

    def allow(self, key: str, *, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        reset, count = self._buckets.get(key, (now + self._window, 0))
        if now >= reset:
            reset, count = now + self._window, 0
        if count >= self._max_requests:
            self._buckets[key] = (reset, count)
            return False
        self._buckets[key] = (reset, count + 1)
        return True

    def retry_after(self, key: str, *, now: float | None = None) -> int:
        """Seconds until ``key`` gets a fresh window."""

        now = time.time() if now is None else now
        reset, _ = self._buckets.get(key, (now, 0))
        return max(0, int(reset - now + 0.999))
