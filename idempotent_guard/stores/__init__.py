"""Storage backends for reservations."""

from .base import ReservationStore
from .memory import MemoryStore

__all__ = ["ReservationStore", "MemoryStore", "RedisStore"]


def __getattr__(name: str) -> type:
    if name == "RedisStore":
        from .redis import RedisStore

        return RedisStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
