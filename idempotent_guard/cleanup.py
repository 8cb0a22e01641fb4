"""Background loops that keep the reservation namespace clean.

``DelayedCleanupWorker`` deletes reservations whose grace period has passed.
``OrphanMonitor`` purges reservations that somehow lost their TTL, which
would otherwise block their fingerprint forever.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from .models import DELAY_DELETE_QUEUE, KEY_PREFIX, TTLStatus
from .stores import ReservationStore

logger = logging.getLogger(__name__)


class PeriodicTask(ABC):
    """Run ``run_once`` on a daemon thread every ``interval`` seconds.

    The first run happens immediately after ``start``. Exceptions from a
    run are logged and the loop carries on with the next tick.
    """

    name = "periodic-task"

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @abstractmethod
    def run_once(self) -> object:
        """Perform one tick."""

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            # Still running after a timed-out join; keep the handle so start()
            # cannot spawn a second loop
            if not self._thread.is_alive():
                self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("%s tick failed", self.name)
            self._stop.wait(self.interval)


class DelayedCleanupWorker(PeriodicTask):
    """Delete queued reservation keys once they fall due.

    Args:
        store: Reservation store holding the queue
        interval: Seconds between ticks
        clock: Returns the current time in seconds
    """

    name = "idempotent-delayed-delete"

    def __init__(
        self,
        store: ReservationStore,
        interval: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(interval)
        self.store = store
        self._clock = clock

    def run_once(self) -> int:
        """Process every due task.

        Returns:
            Number of tasks removed from the queue
        """
        now_ms = int(self._clock() * 1000)
        try:
            keys = self.store.drain_due(now_ms)
        except Exception:
            logger.exception("Failed to scan delayed delete tasks")
            return 0

        processed = 0
        for key in keys:
            try:
                if self.store.exists(key):
                    self.store.delete_now(key)
                    logger.info("Delayed delete done, key: %s", key)
                self.store.remove_from_queue(key)
                processed += 1
            except Exception:
                logger.exception("Failed to process delayed delete, key: %s", key)

        return processed


class OrphanMonitor(PeriodicTask):
    """Delete reservation keys that have no TTL.

    Every reservation is created with a TTL, so a key without one means a
    writer bypassed the reservation path or the store lost TTL metadata.

    Args:
        store: Reservation store to sweep
        interval: Seconds between sweeps
        prefix: Reservation key namespace
    """

    name = "idempotent-orphan-monitor"

    def __init__(
        self,
        store: ReservationStore,
        interval: float = 3600.0,
        prefix: str = KEY_PREFIX,
    ) -> None:
        super().__init__(interval)
        self.store = store
        self.prefix = prefix

    def run_once(self) -> list[str]:
        return self.sweep()

    def sweep(self) -> list[str]:
        """Purge keys without a TTL.

        Returns:
            Keys that were found without a TTL and deleted
        """
        orphans: list[str] = []
        for key in self.store.list_keys_by_prefix(self.prefix):
            # The delayed-delete queue shares the namespace
            if key == DELAY_DELETE_QUEUE:
                continue
            try:
                if self.store.get_ttl(key) is TTLStatus.NOT_SET:
                    self.store.delete_now(key)
                    orphans.append(key)
                    logger.error("Deleted idempotent key without expiration: %s", key)
            except Exception:
                logger.exception("Failed to check idempotent key: %s", key)

        return orphans
