"""
Process-lifetime shared state for place lookups: per-client request
throttling, a geocoding result cache and outbound call spacing.

Each object owns its lock and is injected into the resolver, so tests build
isolated instances instead of sharing module globals.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

Clock = Callable[[], float]

_MISS = object()


class OperationCancelled(Exception):
    """Raised when a caller's cancel event fires before an outbound call."""


class ClientRateLimiter:
    """Reject consecutive requests from one client address inside a window."""

    def __init__(self, window_seconds: float, max_clients: int = 10_000, clock: Clock = time.monotonic):
        self.window_seconds = window_seconds
        self.max_clients = max_clients
        self._clock = clock
        self._lock = threading.Lock()
        self._last_seen: dict[str, float] = {}

    def allow(self, client_address: str | None) -> bool:
        key = client_address or "unknown"
        now = self._clock()
        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self.window_seconds:
                return False
            self._last_seen[key] = now
            if len(self._last_seen) > self.max_clients:
                self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        expired = [k for k, ts in self._last_seen.items() if now - ts >= self.window_seconds]
        for key in expired:
            del self._last_seen[key]


class GeocodeCache:
    """TTL cache with an LRU size cap. Negative results (None) are cached too."""

    def __init__(self, ttl_seconds: float, max_entries: int = 1000, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    @staticmethod
    def make_key(query: str, destination: str | None = None) -> str:
        return f"{query.strip().lower()}|{(destination or '').strip().lower()}"

    def get(self, key: str) -> tuple[bool, Any]:
        """Return (hit, value)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key, _MISS)
            if entry is _MISS:
                return False, None
            stored_at, value = entry
            if now - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return False, None
            self._entries.move_to_end(key)
            return True, value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MinIntervalThrottle:
    """Keep at least `interval_seconds` between the END of one call and the start of the next."""

    def __init__(self, interval_seconds: float, clock: Clock = time.monotonic):
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last_finished: float | None = None

    @contextmanager
    def slot(self, cancel_event: threading.Event | None = None) -> Iterator[None]:
        with self._lock:
            if self._last_finished is not None:
                remaining = self.interval_seconds - (self._clock() - self._last_finished)
                if remaining > 0:
                    waiter = cancel_event if cancel_event is not None else threading.Event()
                    if waiter.wait(remaining):
                        raise OperationCancelled()
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled()
            try:
                yield
            finally:
                self._last_finished = self._clock()
