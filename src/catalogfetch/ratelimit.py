"""Per-client rate limiter for the proxy gateway, backed by ``pyrate-limiter``.

Each client key gets its own ``InMemoryBucket`` holding a sliding window of
``points`` per ``window_seconds``. ``consume`` is synchronous: on a single
event loop the check-and-record step cannot interleave with another request,
and the ``Limiter`` serialises it with its own lock as well.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable

from pyrate_limiter import (
    AbstractBucket,
    BucketFactory,
    Duration,
    InMemoryBucket,
    Limiter,
    Rate,
    RateItem,
)


class ClientBucketFactory(BucketFactory):
    """One in-memory bucket per client key, timestamps from an injectable clock.

    Idle buckets are leaked and dropped at most once per window, so the map
    only holds clients seen recently.
    """

    def __init__(self, rate: Rate, clock: Callable[[], float]) -> None:
        self.rate = rate
        self._clock = clock
        self.buckets: dict[str, InMemoryBucket] = {}
        self._last_prune = self.now_ms()

    def now_ms(self) -> int:
        return round(self._clock() * 1000)

    def wrap_item(self, name: str, weight: int = 1) -> RateItem:
        return RateItem(name, self.now_ms(), weight=weight)

    def get(self, item: RateItem) -> AbstractBucket:
        self._prune(item.timestamp)
        bucket = self.buckets.get(item.name)
        if bucket is None:
            bucket = self.buckets[item.name] = InMemoryBucket([self.rate])
        return bucket

    def _prune(self, now: int) -> None:
        if now - self._last_prune < self.rate.interval:
            return
        self._last_prune = now
        for key, bucket in list(self.buckets.items()):
            bucket.leak(now)
            if not bucket.items:
                del self.buckets[key]


class RateLimiter:
    """Allow ``points`` requests per ``window_seconds`` for each key."""

    def __init__(
        self,
        points: int = 60,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if points < 1 or window_seconds <= 0:
            raise ValueError("points and window_seconds must be positive")
        self.points = points
        self.window_seconds = window_seconds
        self.rate = Rate(points, int(Duration.SECOND * window_seconds))
        self._factory = ClientBucketFactory(self.rate, clock)
        self._limiter = Limiter(self._factory, raise_when_fail=False, max_delay=None)

    def consume(self, key: str) -> bool:
        """Take one point for ``key``. Returns False when the window is exhausted."""
        return bool(self._limiter.try_acquire(key))

    def retry_after(self, key: str) -> int:
        """Whole seconds until ``key`` regains a point (0 if it has one now)."""
        bucket = self._factory.buckets.get(key)
        if bucket is None or len(bucket.items) < self.points:
            return 0
        # Items are oldest first; the earliest of the last ``points`` frees the next slot
        oldest = bucket.items[-self.points]
        left_ms = oldest.timestamp + self.rate.interval - self._factory.now_ms()
        if left_ms < 0:
            return 0
        return max(1, math.ceil(left_ms / 1000))
