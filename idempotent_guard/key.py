"""Fingerprint generation for idempotent operations."""

import hashlib
import json
import logging
from collections.abc import Mapping

from . import expression
from .config import OperationConfig
from .models import Fingerprint, Invocation
from .request import (
    Request,
    decode_body,
    get_header_with_variants,
    resolve_client_ip,
)

logger = logging.getLogger(__name__)


def build_fingerprint(
    config: OperationConfig,
    invocation: Invocation,
    default_token_header: str = "token",
) -> Fingerprint:
    """Build the fingerprint identifying a logical request.

    Args:
        config: Configuration of the operation being invoked
        invocation: The call, including its inbound request
        default_token_header: Header used when the operation names none

    Returns:
        Fingerprint whose key is
        ``idempotent:<token>:<ip>:<port>:<sha256 of content>``

    Raises:
        ConfigurationError: If the custom key expression cannot be evaluated

    The hashed content is the key material (custom expression result, or
    ``operation_id:args_hash``), followed by the normalized request body and
    the caller's token, IP and port.
    """
    params = invocation.named_parameters()

    if config.key:
        content = expression.evaluate(config.key, params)
    else:
        content = f"{config.operation_id}:{hash_arguments(params)}"

    request = invocation.request
    token, ip, port = "", "", ""
    if request is not None:
        body = _safe_decode_body(request)
        if body:
            content += normalize_body(body)

        header_name = config.token_header or default_token_header
        token = get_header_with_variants(request, header_name) or ""
        ip = resolve_client_ip(request)
        port = str(request.remote_port)

    content = "|".join((content, token, ip, port))
    return Fingerprint(token=token, ip=ip, port=port, digest=sha256_hex(content))


def sha256_hex(content: str) -> str:
    """64-character hex SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def hash_arguments(params: Mapping[str, object]) -> str:
    """Stable short hash of named call arguments.

    ``self`` and ``cls`` are left out so that every instance of a class
    maps the same arguments to the same hash.
    """
    arguments = {k: v for k, v in params.items() if k not in ("self", "cls")}
    normalized = _normalize_args(arguments)
    joined = ":".join(f"{k}={v}" for k, v in sorted(normalized.items()))
    return sha256_hex(joined)[:16]


def normalize_body(body: Mapping[str, object]) -> str:
    """Serialize a decoded body independent of field order and name case.

    Null-valued fields are dropped and field names are lower-cased. When
    two names differ only by case, the one sorting last wins.
    """
    present = [name for name, value in body.items() if value is not None]

    normalized: dict[str, object] = {}
    for name in sorted(present, key=lambda k: (k.lower(), k)):
        normalized[name.lower()] = body[name]

    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def _safe_decode_body(request: Request) -> dict[str, object]:
    try:
        return decode_body(request)
    except ValueError as e:
        logger.warning("Could not decode request body, ignoring it: %s", e)
        return {}


def _normalize_args(params: Mapping[str, object]) -> dict[str, str]:
    """Normalize arguments to a stable string representation.

    Args:
        params: Parameter name -> argument value

    Returns:
        Dictionary with stable string representations
    """
    return {name: _serialize_value(value) for name, value in params.items()}


def _serialize_value(value: object) -> str:
    """Serialize a value to a stable string representation.

    Args:
        value: Value to serialize

    Returns:
        Stable string representation
    """
    # Handle common types directly
    if isinstance(value, (str, int, float, bool, type(None))):
        return json.dumps(value)

    if isinstance(value, (list, tuple)):
        return json.dumps([_serialize_value(v) for v in value])

    if isinstance(value, Mapping):
        return json.dumps(
            {str(k): _serialize_value(v) for k, v in value.items()},
            sort_keys=True,
        )

    # Sets have no order of their own
    if isinstance(value, (set, frozenset)):
        return json.dumps(sorted(_serialize_value(v) for v in value))

    # Fallback: repr is stable for value objects such as dataclasses
    return repr(value)
