"""Framework-neutral view of an inbound request.

Web adapters build a ``Request`` from their native request object and bind
it for the duration of the handler with ``bind_request``. The guard reads
caller identity (token header, client IP and port) and the request body
from it.
"""

import json
import logging
import socket
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from urllib.parse import unquote_plus

from .exceptions import ConfigurationError
from .utils import is_blank

logger = logging.getLogger(__name__)

IP_HEADERS = (
    "x-forwarded-for",
    "Proxy-Client-IP",
    "WL-Proxy-Client-IP",
    "HTTP_CLIENT_IP",
    "HTTP_X_FORWARDED_FOR",
)

LOOPBACK_ADDRESSES = ("localhost", "127.0.0.1", "0:0:0:0:0:0:0:1", "::1")

_current_request: ContextVar["Request | None"] = ContextVar(
    "idempotent_guard_request", default=None
)


@dataclass
class Request:
    """Inbound request data the guard needs.

    Attributes:
        method: HTTP method
        path: Request path
        headers: Header name -> value, names as sent by the client
        params: Query/form parameters (a value may be a list of values)
        body: Raw request body
        content_type: Content-Type header value
        remote_addr: Socket peer address
        remote_port: Socket peer port
    """

    method: str = "GET"
    path: str = "/"
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str | list[str]] = field(default_factory=dict)
    body: bytes = b""
    content_type: str | None = None
    remote_addr: str = ""
    remote_port: int = 0

    def header(self, name: str) -> str | None:
        """Exact-name header lookup."""
        return self.headers.get(name)

    def header_ci(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, candidate in self.headers.items():
            if key.lower() == lowered:
                return candidate
        return None

    def param(self, name: str) -> str | None:
        """First value of a query/form parameter."""
        value = self.params.get(name)
        if isinstance(value, list):
            return value[0] if value else None
        return value

    def single_params(self) -> dict[str, str | None]:
        """All parameters, keeping the first value of repeated ones."""
        return {name: self.param(name) for name in self.params}

    @property
    def mime_type(self) -> str:
        if not self.content_type:
            return ""
        return self.content_type.split(";", 1)[0].strip().lower()


@contextmanager
def bind_request(request: Request) -> Iterator[Request]:
    """Make ``request`` the current request for the enclosed block."""
    token = _current_request.set(request)
    try:
        yield request
    finally:
        _current_request.reset(token)


def current_request() -> Request:
    """Return the request bound to the current context.

    Raises:
        ConfigurationError: If no request is bound
    """
    request = _current_request.get()
    if request is None:
        raise ConfigurationError("No request is bound to the current context")
    return request


def _capitalize_each_word(value: str, delimiter: str) -> str:
    return delimiter.join(
        part[:1].upper() + part[1:].lower() for part in value.split(delimiter)
    )


def header_variants(name: str) -> list[str]:
    """Spellings of a header name to probe, in order, without duplicates.

    Example:
        header_variants("x-token")
        -> ["x-token", "X-TOKEN", "X-Token", "x_token", "X_TOKEN", "X_Token"]
    """
    variants = [name, name.lower(), name.upper(), _capitalize_each_word(name, "-")]

    if "-" in name:
        underscored = name.replace("-", "_")
        variants += [
            underscored,
            underscored.lower(),
            underscored.upper(),
            _capitalize_each_word(underscored, "_"),
        ]

    if "_" in name:
        dashed = name.replace("_", "-")
        variants += [
            dashed,
            dashed.lower(),
            dashed.upper(),
            _capitalize_each_word(dashed, "-"),
        ]

    return list(dict.fromkeys(variants))


def get_header_with_variants(request: Request, name: str | None) -> str | None:
    """Return the first non-blank header value among the name's variants."""
    if is_blank(name):
        return None

    for variant in header_variants(name):
        value = request.header(variant)
        if not is_blank(value):
            return value
    return None


def _local_address() -> str:
    return socket.gethostbyname(socket.gethostname())


def resolve_client_ip(request: Request) -> str:
    """Resolve the client IP, honouring proxy headers.

    Proxy headers are consulted in ``IP_HEADERS`` order before the socket
    address. Loopback addresses resolve to the host's own address, and a
    comma-joined forwarded chain keeps its first (client) entry.
    """
    ip: str | None = None
    for header in IP_HEADERS:
        ip = request.header_ci(header)
        if not is_blank(ip) and ip.lower() != "unknown":
            break
    else:
        ip = request.remote_addr

    if ip and ip.lower() in LOOPBACK_ADDRESSES:
        try:
            ip = _local_address()
        except OSError as e:
            logger.warning("Could not resolve local address for %s: %s", ip, e)

    if ip and "," in ip:
        ip = ip.split(",", 1)[0]

    return (ip or "").strip()


def load_json(text: str) -> object:
    """Parse a JSON document.

    Raises:
        ValueError: If the text is not valid JSON or nests too deeply
    """
    try:
        return json.loads(text)
    except RecursionError as e:
        raise ValueError("JSON document nested too deeply") from e


def parse_form(text: str) -> dict[str, str]:
    """Parse an urlencoded form body.

    Only ``name=value`` segments with a non-empty name are kept.
    """
    fields = {}
    for pair in text.split("&"):
        name, sep, value = pair.partition("=")
        if sep and name:
            fields[unquote_plus(name)] = unquote_plus(value)
    return fields


def decode_body(request: Request) -> dict[str, object]:
    """Decode the request body into a field mapping.

    JSON objects are returned as-is, JSON arrays are keyed by index and
    form bodies are parsed as ``name=value`` pairs. Other content types
    yield an empty mapping.

    Raises:
        ValueError: If the body cannot be decoded
    """
    mime_type = request.mime_type
    if not request.body:
        return {}

    if mime_type == "application/json":
        text = request.body.decode("utf-8")
        if not text.strip():
            return {}
        parsed = load_json(text)
        if isinstance(parsed, list):
            return {str(i): item for i, item in enumerate(parsed)}
        if not isinstance(parsed, dict):
            raise ValueError(f"Unsupported JSON body type: {type(parsed).__name__}")
        return parsed

    if mime_type == "application/x-www-form-urlencoded":
        text = request.body.decode("utf-8")
        return parse_form(text)

    return {}
