"""Value objects passed between the guard, the key builder and the stores."""

import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .request import Request

KEY_PREFIX = "idempotent:"
DELAY_DELETE_QUEUE = "idempotent:delay:delete"


class TTLStatus(Enum):
    """TTL states that are not a remaining duration."""

    NOT_SET = "not_set"
    ABSENT = "absent"


@dataclass(frozen=True)
class Fingerprint:
    """Deterministic identity of a logical request.

    Attributes:
        token: Caller token resolved from the request headers ("" if none)
        ip: Resolved client IP
        port: Client port
        digest: SHA-256 hex digest of the request content
    """

    token: str
    ip: str
    port: str
    digest: str

    @property
    def key(self) -> str:
        """Reservation key in the store."""
        return f"{KEY_PREFIX}{self.token}:{self.ip}:{self.port}:{self.digest}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class CleanupTask:
    """A reservation key scheduled for deletion at ``due_at_ms``."""

    key: str
    due_at_ms: int

    def is_due(self, now_ms: int) -> bool:
        return self.due_at_ms <= now_ms


@dataclass
class Invocation:
    """A single call of a protected operation.

    Attributes:
        func: The wrapped function
        args: Positional arguments
        kwargs: Keyword arguments
        request: Inbound request the call originates from
    """

    func: Callable
    args: tuple[object, ...] = ()
    kwargs: dict[str, object] = field(default_factory=dict)
    request: "Request | None" = None

    def named_parameters(self) -> dict[str, object]:
        """Bind arguments to parameter names, applying defaults.

        Falls back to ``arg0``, ``arg1``... for callables whose signature
        cannot be inspected or does not accept the given arguments.
        """
        try:
            bound = inspect.signature(self.func).bind(*self.args, **self.kwargs)
        except (TypeError, ValueError):
            named: dict[str, object] = {
                f"arg{i}": arg for i, arg in enumerate(self.args)
            }
            named.update(self.kwargs)
            return named

        bound.apply_defaults()
        return dict(bound.arguments)
