"""In-memory store implementation."""

import threading
import time
from collections.abc import Callable

from ..models import CleanupTask, DELAY_DELETE_QUEUE, TTLStatus
from .base import ReservationStore


class MemoryStore(ReservationStore):
    """Thread-safe in-memory reservation store.

    Note: This store does NOT persist across processes or restarts.
    Use RedisStore for multi-process scenarios.

    Args:
        clock: Returns the current time in seconds (default: time.time)
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._queue: dict[str, int] = {}
        self._global_lock = threading.Lock()

    def _live(self, key: str) -> tuple[str, float | None] | None:
        """Return the entry for ``key``, dropping it if expired.

        Caller must hold ``_global_lock``.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None

        return entry

    def try_reserve(self, key: str, ttl: float) -> bool:
        """Reserve ``key`` unless a live entry exists."""
        with self._global_lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = ("1", self._clock() + ttl)
            return True

    def refresh_ttl(self, key: str, ttl: float, value: str = "") -> None:
        with self._global_lock:
            if self._live(key) is not None:
                self._entries[key] = (value, self._clock() + ttl)

    def exists(self, key: str) -> bool:
        with self._global_lock:
            return self._live(key) is not None

    def delete_now(self, key: str) -> None:
        with self._global_lock:
            self._entries.pop(key, None)

    def enqueue_delayed_delete(self, key: str, delay_seconds: float) -> CleanupTask:
        due_at_ms = int(self._clock() * 1000) + int(delay_seconds * 1000)
        with self._global_lock:
            self._queue[key] = due_at_ms
        return CleanupTask(key=key, due_at_ms=due_at_ms)

    def drain_due(self, now_ms: int) -> list[str]:
        with self._global_lock:
            due = [(score, key) for key, score in self._queue.items() if score <= now_ms]
        return [key for _, key in sorted(due)]

    def remove_from_queue(self, key: str) -> None:
        with self._global_lock:
            self._queue.pop(key, None)

    def list_keys_by_prefix(self, prefix: str) -> list[str]:
        with self._global_lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            if self._queue and DELAY_DELETE_QUEUE.startswith(prefix):
                keys.append(DELAY_DELETE_QUEUE)
            return [key for key in keys if key == DELAY_DELETE_QUEUE or self._live(key)]

    def get_ttl(self, key: str) -> float | TTLStatus:
        with self._global_lock:
            if key == DELAY_DELETE_QUEUE and self._queue:
                return TTLStatus.NOT_SET
            entry = self._live(key)
            if entry is None:
                return TTLStatus.ABSENT
            _, expires_at = entry
            if expires_at is None:
                return TTLStatus.NOT_SET
            return expires_at - self._clock()

    def put(self, key: str, value: str = "1", ttl: float | None = None) -> None:
        """Write a key directly, without a TTL when ``ttl`` is None.

        Bypasses the reservation protocol (useful for testing).
        """
        with self._global_lock:
            expires_at = None if ttl is None else self._clock() + ttl
            self._entries[key] = (value, expires_at)

    def clear(self) -> None:
        """Clear all keys and queued tasks (useful for testing)."""
        with self._global_lock:
            self._entries.clear()
            self._queue.clear()
