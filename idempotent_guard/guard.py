"""Idempotency guard and the ``idempotent`` decorators."""

import functools
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TypeVar

from .cleanup import DelayedCleanupWorker, OrphanMonitor
from .config import DEFAULT_INFO, GuardSettings, OperationConfig
from .exceptions import (
    ConfigurationError,
    DuplicateRequestError,
    OperationFailedError,
    SignatureInvalidError,
    StoreUnavailableError,
)
from .key import build_fingerprint
from .models import Invocation
from .registry import CONFIG_ATTR, OperationRegistry, operation_id_for
from .request import Request, current_request
from .signature import SignatureVerifier
from .stores import ReservationStore

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)

_active_guard: "IdempotencyGuard | None" = None


def get_active_guard() -> "IdempotencyGuard":
    """Return the guard installed with ``IdempotencyGuard.install``.

    Raises:
        ConfigurationError: If no guard is installed
    """
    if _active_guard is None:
        raise ConfigurationError("No IdempotencyGuard installed")
    return _active_guard


class IdempotencyGuard:
    """Let only the first of a set of identical requests run an operation.

    Each call is fingerprinted, and the fingerprint is reserved in the
    store with an atomic set-if-absent. A caller that loses the race gets
    ``DuplicateRequestError`` immediately; the guard never waits.

    Args:
        store: Shared reservation store
        registry: Operation registry (defaults to an empty one)
        settings: Guard-wide settings
        verifier: Signature verifier (built from ``settings.public_key``
            when omitted)
    """

    def __init__(
        self,
        store: ReservationStore,
        registry: OperationRegistry | None = None,
        settings: GuardSettings | None = None,
        verifier: SignatureVerifier | None = None,
    ) -> None:
        self.store = store
        self.registry = registry if registry is not None else OperationRegistry()
        self.settings = settings or GuardSettings()
        if verifier is None and self.settings.public_key:
            verifier = SignatureVerifier(self.settings.public_key)
        self.verifier = verifier
        self._background: list[DelayedCleanupWorker | OrphanMonitor] = []

    @classmethod
    def from_settings(
        cls,
        settings: GuardSettings,
        store: ReservationStore | None = None,
    ) -> "IdempotencyGuard":
        """Build a guard and scan ``settings.scan_modules`` for operations.

        Connects a RedisStore to ``settings.redis_url`` when no store is
        given.

        Raises:
            ConfigurationError: If no modules are configured
        """
        if store is None:
            from .stores.redis import RedisStore

            store = RedisStore.from_url(settings.redis_url)

        guard = cls(store, settings=settings)
        guard.registry.scan(settings.scan_modules)
        return guard

    def install(self) -> "IdempotencyGuard":
        """Make this the guard used by module-level ``@idempotent`` functions."""
        global _active_guard
        _active_guard = self
        return self

    def idempotent(self, **options: object) -> Callable[[F], F]:
        """Register and protect a function with this guard.

        Takes the same options as the module-level ``idempotent``.
        """
        return _make_decorator(self, options)

    def invoke(
        self,
        operation_id: str,
        func: Callable,
        args: Sequence[object] = (),
        kwargs: Mapping[str, object] | None = None,
        request: Request | None = None,
    ) -> object:
        """Run ``func`` under the guard.

        Args:
            operation_id: Registered operation identifier
            func: The protected operation
            args: Positional arguments for ``func``
            kwargs: Keyword arguments for ``func``
            request: Inbound request (defaults to the bound request)

        Returns:
            Whatever ``func`` returns

        Raises:
            ConfigurationError: Unregistered operation, bad key expression
                or no request available
            SignatureInvalidError: Signature verification failed
            DuplicateRequestError: The same request is already reserved
            StoreUnavailableError: The store could not confirm the reservation
            OperationFailedError: ``func`` raised
        """
        config = self.registry.get(operation_id)
        if request is None:
            request = current_request()

        if config.enable_sign_verify:
            self._verify_signature(request)

        invocation = Invocation(func, tuple(args), dict(kwargs or {}), request)
        key = build_fingerprint(config, invocation, self.settings.token_header).key

        ttl = config.ttl
        if not self.store.try_reserve(key, ttl):
            logger.warning("Duplicate request rejected, key: %s", key)
            raise DuplicateRequestError(key, config.info)
        self.store.refresh_ttl(key, ttl)

        try:
            result = func(*invocation.args, **invocation.kwargs)
        except Exception as e:
            if config.del_key:
                self._delete(key)
                # Queued as well in case the immediate delete did not land
                self._schedule_delete(key, config.delay_check_seconds)
                logger.debug("Operation failed, released idempotent key: %s", key)
            raise OperationFailedError(config.operation_id, e) from e

        if config.del_key:
            self._schedule_delete(key, config.delay_check_seconds)
            logger.debug("Operation done, idempotent key scheduled for delete: %s", key)

        return result

    def _verify_signature(self, request: Request) -> None:
        if self.verifier is None:
            raise ConfigurationError(
                "Signature verification is enabled but no public key is configured"
            )
        if not self.verifier.verify(request):
            raise SignatureInvalidError("missing or incorrect signature")

    def _delete(self, key: str) -> None:
        try:
            self.store.delete_now(key)
        except StoreUnavailableError:
            logger.exception("Failed to delete idempotent key: %s", key)

    def _schedule_delete(self, key: str, delay_seconds: float) -> None:
        try:
            self.store.enqueue_delayed_delete(key, delay_seconds)
        except StoreUnavailableError:
            logger.exception("Failed to add delayed delete task, key: %s", key)

    def start_background_tasks(self) -> None:
        """Start the delayed-delete worker and the orphan monitor."""
        if self._background:
            return
        self._background = [
            DelayedCleanupWorker(self.store, interval=self.settings.cleanup_interval),
            OrphanMonitor(self.store, interval=self.settings.monitor_interval),
        ]
        for task in self._background:
            task.start()

    def stop_background_tasks(self, timeout: float | None = None) -> None:
        for task in self._background:
            task.stop(timeout)
        self._background = []


def idempotent(
    key: str = "",
    token_header: str = "",
    expire_time: float = 1,
    time_unit: str = "seconds",
    info: str = DEFAULT_INFO,
    del_key: bool = False,
    delay_check_seconds: float = 10,
    enable_sign_verify: bool = False,
) -> Callable[[F], F]:
    """Decorator to make a request-handling function idempotent.

    The configuration is attached to the function and picked up by
    ``OperationRegistry.scan``; calls run through the installed guard.

    Args:
        key: Expression over the parameters used as key material instead
            of the full argument list, e.g. ``"#order.id"``
        token_header: Header carrying the caller token (default from
            settings)
        expire_time: Reservation lifetime, in ``time_unit`` (keep it longer
            than the operation takes)
        time_unit: "milliseconds", "seconds", "minutes", "hours" or "days"
        info: Message of the DuplicateRequestError raised for duplicates
        del_key: Delete the reservation after the operation:
            - on success, ``delay_check_seconds`` later
            - on failure, immediately (so a retry is allowed)
        delay_check_seconds: Grace period before the delayed delete
        enable_sign_verify: Verify the request signature first

    Example:
        @idempotent(expire_time=5, del_key=True, delay_check_seconds=2)
        def create_order(user_id, sku):
            return orders.create(user_id, sku)
    """
    return _make_decorator(
        None,
        {
            "key": key,
            "token_header": token_header,
            "expire_time": expire_time,
            "time_unit": time_unit,
            "info": info,
            "del_key": del_key,
            "delay_check_seconds": delay_check_seconds,
            "enable_sign_verify": enable_sign_verify,
        },
    )


def _make_decorator(
    guard: IdempotencyGuard | None, options: Mapping[str, object]
) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        config = OperationConfig(operation_id=operation_id_for(func), **options)
        if guard is not None:
            guard.registry.register(config)

        @functools.wraps(func)
        def wrapper(*args: object, **kwargs: object) -> object:
            active = guard if guard is not None else get_active_guard()
            return active.invoke(config.operation_id, func, args, kwargs)

        setattr(wrapper, CONFIG_ATTR, config)
        return wrapper  # type: ignore[return-value]

    return decorator
