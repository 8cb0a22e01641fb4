"""Base store interface for reservations."""

from abc import ABC, abstractmethod

from ..models import CleanupTask, TTLStatus


class ReservationStore(ABC):
    """Abstract base class for reservation stores.

    Stores are responsible for:
    - Atomic set-if-absent reservation with a TTL
    - Deleting reservations, immediately or through a time-ordered queue
    - Reporting key TTLs so orphaned reservations can be found

    Implementations raise ``StoreUnavailableError`` when the backend cannot
    be reached, never a plain "not reserved" answer.
    """

    @abstractmethod
    def try_reserve(self, key: str, ttl: float) -> bool:
        """Atomically create ``key`` with a TTL if it does not exist.

        Args:
            key: Reservation key
            ttl: Time-to-live in seconds

        Returns:
            True if this caller created the reservation
        """

    @abstractmethod
    def refresh_ttl(self, key: str, ttl: float, value: str = "") -> None:
        """Overwrite the value and TTL of an existing key.

        Does nothing if the key no longer exists.
        """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether an unexpired key exists."""

    @abstractmethod
    def delete_now(self, key: str) -> None:
        """Delete a key. Deleting an absent key is not an error."""

    @abstractmethod
    def enqueue_delayed_delete(self, key: str, delay_seconds: float) -> CleanupTask:
        """Schedule ``key`` for deletion ``delay_seconds`` from now.

        Returns:
            The queued task
        """

    @abstractmethod
    def drain_due(self, now_ms: int) -> list[str]:
        """Return queued keys due at or before ``now_ms``, oldest first.

        Keys stay queued until ``remove_from_queue`` is called.
        """

    @abstractmethod
    def remove_from_queue(self, key: str) -> None:
        """Remove a key from the delayed-delete queue."""

    @abstractmethod
    def list_keys_by_prefix(self, prefix: str) -> list[str]:
        """List existing keys starting with ``prefix``."""

    @abstractmethod
    def get_ttl(self, key: str) -> float | TTLStatus:
        """Remaining TTL in seconds, or a ``TTLStatus`` if there is none."""
