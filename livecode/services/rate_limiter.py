"""Per-session fixed-window run counters.

A window opens at a key's first hit and lasts ``window_seconds``;
``hit(key)`` counts into it and reports whether the caller is still
inside the window's capacity. Counters are scoped by key and injected
where needed, never held in a module global.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    retry_after_seconds: int


class RateLimiter(Protocol):
    def hit(self, key: str) -> RateDecision: ...


class InMemoryRateLimiter:
    def __init__(self, max_hits: int = 10, window_seconds: int = 60,
                 clock: Callable[[], float] = time.time):
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self._clock = clock
        # key -> (window start, hits)
        self._counters: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._next_prune = 0.0

    def hit(self, key):
        now = self._clock()
        with self._lock:
            self._prune(now)
            started, count = self._counters.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._counters[key] = (started, count)
        allowed = count <= self.max_hits
        retry_after = 0 if allowed else max(1, math.ceil(started + self.window_seconds - now))
        return RateDecision(allowed, count, retry_after)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._counters)

    def _prune(self, now):
        if now < self._next_prune:
            return
        expired = [k for k, (started, _) in self._counters.items() if now - started >= self.window_seconds]
        for k in expired:
            del self._counters[k]
        self._next_prune = now + self.window_seconds


class RedisRateLimiter:
    """Window kept in Redis.

    ``SET NX EX`` opens the window on the first hit, then ``INCR`` and
    ``TTL`` run in the same MULTI block so the count and the time left
    come from one snapshot.
    """

    def __init__(self, client, max_hits: int = 10, window_seconds: int = 60,
                 prefix: str = "livecode:ratelimit"):
        self.client = client
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self.prefix = prefix

    def hit(self, key):
        counter_key = f"{self.prefix}:{key}"
        pipe = self.client.pipeline(transaction=True)
        pipe.set(counter_key, 0, ex=self.window_seconds, nx=True)
        pipe.incr(counter_key)
        pipe.ttl(counter_key)
        _, count, ttl = pipe.execute()
        count = int(count)
        allowed = count <= self.max_hits
        retry_after = 0
        if not allowed:
            retry_after = int(ttl) if ttl and int(ttl) > 0 else self.window_seconds
            logger.debug(f"Rate window {counter_key} at {count}/{self.max_hits}, resets in {retry_after}s")
        return RateDecision(allowed, count, retry_after)
