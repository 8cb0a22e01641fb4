"""Per-operation configuration and guard-wide settings."""

from dataclasses import dataclass
from typing import Annotated

from pydantic import Field, PositiveFloat, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

TIME_UNITS: dict[str, float] = {
    "milliseconds": 0.001,
    "seconds": 1.0,
    "minutes": 60.0,
    "hours": 3600.0,
    "days": 86400.0,
}

DEFAULT_INFO = "Duplicate request, please try again later"


@dataclass(frozen=True)
class OperationConfig:
    """Resolved configuration of one protected operation.

    Built once when the operation is registered and shared by every
    invocation.

    Attributes:
        operation_id: Stable name plus parameter-type signature
        key: Optional expression producing custom key material
        token_header: Header carrying the caller token ("" = guard default)
        expire_time: Reservation TTL, in ``time_unit``
        time_unit: One of ``TIME_UNITS``
        info: Message surfaced on duplicate requests
        del_key: Delete the reservation after the operation completes
        delay_check_seconds: Grace period before the delayed delete
        enable_sign_verify: Verify the request signature first
    """

    operation_id: str
    key: str = ""
    token_header: str = ""
    expire_time: float = 1
    time_unit: str = "seconds"
    info: str = DEFAULT_INFO
    del_key: bool = False
    delay_check_seconds: float = 10
    enable_sign_verify: bool = False

    def __post_init__(self) -> None:
        if not self.operation_id:
            raise ValueError("operation_id must not be empty")
        if self.time_unit not in TIME_UNITS:
            raise ValueError(
                f"time_unit must be one of {sorted(TIME_UNITS)}, got '{self.time_unit}'"
            )
        if self.expire_time <= 0:
            raise ValueError(f"expire_time must be positive, got {self.expire_time}")
        if self.delay_check_seconds < 0:
            raise ValueError(
                f"delay_check_seconds must not be negative, got {self.delay_check_seconds}"
            )

    @property
    def ttl(self) -> float:
        """Reservation TTL in seconds."""
        return self.expire_time * TIME_UNITS[self.time_unit]


class GuardSettings(BaseSettings):
    """Guard-wide settings.

    Every field can be overridden via an ``IDEMPOTENT_`` environment
    variable, e.g. ``IDEMPOTENT_SCAN_MODULES=shop.orders,shop.payments``.

    Attributes:
        scan_modules: Modules scanned for ``@idempotent`` operations
        public_key: Base64 DER public key for signature verification
        token_header: Default header carrying the caller token
        cleanup_interval: Seconds between delayed-delete ticks
        monitor_interval: Seconds between orphan sweeps
        redis_url: Connection URL for the Redis store
    """

    model_config = SettingsConfigDict(
        env_prefix="IDEMPOTENT_",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )

    scan_modules: Annotated[list[str], NoDecode] = Field(default_factory=list)
    public_key: str | None = None
    token_header: str = Field(default="token", min_length=1)
    cleanup_interval: PositiveFloat = 2.0
    monitor_interval: PositiveFloat = 3600.0
    redis_url: str = "redis://localhost:6379/0"

    @field_validator("scan_modules", mode="before")
    @classmethod
    def split_scan_modules(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value
