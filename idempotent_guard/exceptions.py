"""Exceptions for idempotency guard."""


class IdempotencyError(Exception):
    """Base exception for idempotency-related errors."""


class ConfigurationError(IdempotencyError):
    """Raise when an operation is not registered or is misconfigured."""


class SignatureInvalidError(IdempotencyError):
    """Raise when request signature verification fails."""

    def __init__(self, reason: str = "signature verification failed") -> None:
        self.reason = reason
        super().__init__(f"Invalid request signature: {reason}")


class DuplicateRequestError(IdempotencyError):
    """Raise when a reservation for the same fingerprint is already held."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        self.message = message
        super().__init__(message)


class StoreUnavailableError(IdempotencyError):
    """Raise when the reservation store cannot be reached or times out.

    The outcome of the store call is unknown, so the guard treats the
    request as not allowed.
    """


class OperationFailedError(IdempotencyError):
    """Raise when the protected operation itself raised.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, operation_id: str, error: BaseException) -> None:
        self.operation_id = operation_id
        self.error = error
        super().__init__(f"Operation '{operation_id}' failed: {error!r}")
