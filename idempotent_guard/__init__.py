"""Idempotent Guard - duplicate request suppression for Python services.

Fingerprints each request (operation, arguments, normalized body, caller
token, IP and port) and reserves the fingerprint in a shared store, so only
the first of a set of identical requests runs the operation.

Example:
    guard = IdempotencyGuard(RedisStore.from_url("redis://localhost:6379/0"))

    @guard.idempotent(expire_time=5, del_key=True, delay_check_seconds=2)
    def create_order(user_id, sku):
        return orders.create(user_id, sku)

    with bind_request(request):
        create_order(42, "SKU-1")
"""

import logging

from .cleanup import DelayedCleanupWorker, OrphanMonitor
from .config import GuardSettings, OperationConfig
from .exceptions import (
    ConfigurationError,
    DuplicateRequestError,
    IdempotencyError,
    OperationFailedError,
    SignatureInvalidError,
    StoreUnavailableError,
)
from .guard import IdempotencyGuard, get_active_guard, idempotent
from .models import CleanupTask, Fingerprint, Invocation, TTLStatus
from .registry import OperationRegistry
from .request import Request, bind_request, current_request
from .signature import SignatureVerifier
from .stores import MemoryStore, ReservationStore

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "idempotent",
    "IdempotencyGuard",
    "get_active_guard",
    "GuardSettings",
    "OperationConfig",
    "OperationRegistry",
    "Request",
    "bind_request",
    "current_request",
    "SignatureVerifier",
    "DelayedCleanupWorker",
    "OrphanMonitor",
    "Fingerprint",
    "CleanupTask",
    "Invocation",
    "TTLStatus",
    "IdempotencyError",
    "ConfigurationError",
    "SignatureInvalidError",
    "DuplicateRequestError",
    "StoreUnavailableError",
    "OperationFailedError",
    "ReservationStore",
    "MemoryStore",
]
