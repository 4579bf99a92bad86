"""
Rate Limiter - Per-client token bucket

Every inbound request spends one token from its client's bucket. Buckets
refill continuously and are created on first sight of a client; they are
never expired, so memory grows with the number of distinct clients seen by
the process.
"""

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional


@dataclass
class RateBucket:
    tokens: float
    last_refill: float


class RateLimiter:
    """
    Token bucket rate limiter keyed by client identifier (IP).

    A fresh client may send `capacity` requests back to back; after that
    requests are admitted at `refill_rate` per second.
    """

    def __init__(
        self,
        capacity: float = 100.0,
        refill_rate: float = 10.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize rate limiter.

        Args:
            capacity: Maximum tokens a bucket can hold
            refill_rate: Tokens regained per second
            clock: Time source in seconds
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._buckets: Dict[str, RateBucket] = {}
        self._lock = Lock()

    def allow(self, identifier: str) -> bool:
        """
        Admission check for one request.

        Args:
            identifier: Client identifier

        Returns:
            True if the request is admitted, False if it must be rejected
        """
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(identifier)
            if bucket is None:
                bucket = RateBucket(tokens=self.capacity, last_refill=now)
                self._buckets[identifier] = bucket

            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.refill_rate)
            bucket.last_refill = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False

    def bucket(self, identifier: str) -> Optional[RateBucket]:
        with self._lock:
            return self._buckets.get(identifier)
