"""Replay protection and per-address rate limiting.

Both guards keep their records in process memory alongside the time they
were inserted. Records are never deleted on the request path; a periodic
sweep evicts anything older than its TTL.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from threading import Lock
from typing import Protocol

from hlchat.core.clock import Clock, now_ms
from hlchat.core.settings import settings

logger = logging.getLogger(__name__)


class NonceGuard:
    """Single-use nonce registry shared by every sender and every room."""

    def __init__(self, ttl_ms: int | None = None, clock: Clock = now_ms) -> None:
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.nonce_ttl_seconds * 1000
        self._clock = clock
        self._seen: dict[str, int] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def is_used(self, nonce: str) -> bool:
        """Return True if the nonce has already been recorded."""
        with self._lock:
            return nonce in self._seen

    def claim(self, nonce: str) -> bool:
        """Record ``nonce`` as used.

        Returns False when another request recorded it first; the check and
        the insert happen under one lock.
        """
        with self._lock:
            if nonce in self._seen:
                return False
            self._seen[nonce] = self._clock()
            return True

    def sweep(self) -> int:
        """Evict nonces older than the TTL and return how many were removed."""
        cutoff = self._clock() - self.ttl_ms
        with self._lock:
            expired = [nonce for nonce, inserted in self._seen.items() if inserted < cutoff]
            for nonce in expired:
                del self._seen[nonce]
        return len(expired)


@dataclass
class RateWindow:
    """Message count for an address within its current fixed window."""

    count: int
    window_start: int


class RateLimiter:
    """Fixed-window counter per wallet address.

    A window opens on the first event from an address and closes once it is
    older than ``window_ms``; the next event opens a fresh window.
    """

    def __init__(
        self,
        window_ms: int | None = None,
        max_events: int | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.window_ms = window_ms if window_ms is not None else settings.rate_window_seconds * 1000
        self.max_events = max_events if max_events is not None else settings.rate_max_messages
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._lock = Lock()

    def hit(self, address: str) -> bool:
        """Count one attempt for ``address``; return False once over the limit."""
        key = address.lower()
        now = self._clock()
        with self._lock:
            entry = self._windows.get(key)
            if entry is None or now - entry.window_start > self.window_ms:
                entry = RateWindow(count=0, window_start=now)
                self._windows[key] = entry
            entry.count += 1
            return entry.count <= self.max_events

    def remaining(self, address: str) -> int:
        """Return how many more attempts fit in the current window."""
        now = self._clock()
        with self._lock:
            entry = self._windows.get(address.lower())
            if entry is None or now - entry.window_start > self.window_ms:
                return self.max_events
            return max(0, self.max_events - entry.count)

    def sweep(self) -> int:
        """Drop windows that have already closed."""
        cutoff = self._clock() - self.window_ms
        with self._lock:
            expired = [key for key, entry in self._windows.items() if entry.window_start < cutoff]
            for key in expired:
                del self._windows[key]
        return len(expired)


class Sweepable(Protocol):
    def sweep(self) -> int: ...


class ReplaySweeper:
    """Background task that periodically evicts expired guard records."""

    def __init__(self, targets: Iterable[Sweepable], interval_seconds: float | None = None) -> None:
        self.targets = list(targets)
        self.interval = (
            interval_seconds
            if interval_seconds is not None
            else float(settings.nonce_sweep_interval_seconds)
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop if it is not already running."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    def sweep_once(self) -> int:
        """Sweep every target once and return the total number of evictions."""
        removed = 0
        for target in self.targets:
            removed += target.sweep()
        if removed:
            logger.info("Replay sweep evicted %d expired records", removed)
        return removed

    async def _run(self) -> None:
        interval = max(0.1, self.interval)
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                self.sweep_once()


_nonce_guard = NonceGuard()
_rate_limiter = RateLimiter()


def get_nonce_guard() -> NonceGuard:
    """Return the process-wide nonce guard."""
    return _nonce_guard


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter."""
    return _rate_limiter
