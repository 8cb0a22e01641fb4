"""Redis-based store implementation with atomic operations."""

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from ..exceptions import StoreUnavailableError
from ..models import CleanupTask, DELAY_DELETE_QUEUE, TTLStatus
from .base import ReservationStore

if TYPE_CHECKING:
    from redis import Redis


def _ms(seconds: float) -> int:
    """Seconds to whole milliseconds, at least 1 (PX rejects 0)."""
    return max(1, int(seconds * 1000))


def _text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisStore(ReservationStore):
    """Redis-based reservation store.

    Uses Redis SET NX PX for reservations and a sorted set for the
    delayed-delete queue. Safe for multi-process and multi-server scenarios.

    Args:
        client: Redis client instance
        queue_key: Sorted set holding delayed deletes
        clock: Returns the current time in seconds (default: time.time)
    """

    def __init__(
        self,
        client: "Redis",
        queue_key: str = DELAY_DELETE_QUEUE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.queue_key = queue_key
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> "RedisStore":
        """Create a store from a ``redis://`` URL."""
        from redis import Redis

        return cls(Redis.from_url(url, **kwargs))

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except RedisError as e:
            raise StoreUnavailableError(f"Redis {action} failed: {e}") from e

    def try_reserve(self, key: str, ttl: float) -> bool:
        """Reserve ``key`` using SET NX PX, a single atomic command."""
        with self._translate_errors("reserve"):
            return bool(self.client.set(key, "1", nx=True, px=_ms(ttl)))

    def refresh_ttl(self, key: str, ttl: float, value: str = "") -> None:
        # XX: only touch an existing key, never recreate one
        with self._translate_errors("refresh"):
            self.client.set(key, value, xx=True, px=_ms(ttl))

    def exists(self, key: str) -> bool:
        with self._translate_errors("exists"):
            return bool(self.client.exists(key))

    def delete_now(self, key: str) -> None:
        with self._translate_errors("delete"):
            self.client.delete(key)

    def enqueue_delayed_delete(self, key: str, delay_seconds: float) -> CleanupTask:
        due_at_ms = int(self._clock() * 1000) + int(delay_seconds * 1000)
        with self._translate_errors("enqueue"):
            self.client.zadd(self.queue_key, {key: due_at_ms})
        return CleanupTask(key=key, due_at_ms=due_at_ms)

    def drain_due(self, now_ms: int) -> list[str]:
        with self._translate_errors("drain"):
            keys = self.client.zrangebyscore(self.queue_key, 0, now_ms)
        return [_text(key) for key in keys]

    def remove_from_queue(self, key: str) -> None:
        with self._translate_errors("dequeue"):
            self.client.zrem(self.queue_key, key)

    def list_keys_by_prefix(self, prefix: str) -> list[str]:
        with self._translate_errors("scan"):
            return [
                _text(key) for key in self.client.scan_iter(match=f"{prefix}*", count=100)
            ]

    def get_ttl(self, key: str) -> float | TTLStatus:
        with self._translate_errors("pttl"):
            pttl = self.client.pttl(key)
        if pttl == -2:
            return TTLStatus.ABSENT
        if pttl == -1:
            return TTLStatus.NOT_SET
        return pttl / 1000

    def clear(self, prefix: str) -> None:
        """Delete every key with ``prefix`` (useful for testing)."""
        with self._translate_errors("clear"):
            for key in self.client.scan_iter(match=f"{prefix}*", count=100):
                self.client.delete(key)
