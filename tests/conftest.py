"""Shared fixtures."""

import base64

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from idempotent_guard import Request, guard as guard_module
from idempotent_guard.stores import MemoryStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def request_factory():
    """Build requests from a fixed caller unless overridden."""

    def make(**overrides):
        fields = {
            "method": "POST",
            "path": "/orders",
            "headers": {"token": "user-token"},
            "remote_addr": "203.0.113.7",
            "remote_port": 51234,
        }
        fields.update(overrides)
        return Request(**fields)

    return make


@pytest.fixture
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def public_key_b64(rsa_key):
    der = rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")


@pytest.fixture
def sign(rsa_key):
    """Sign content the way a client would."""

    def _sign(content: str) -> str:
        signature = rsa_key.sign(content.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    return _sign


@pytest.fixture(autouse=True)
def reset_active_guard(monkeypatch):
    monkeypatch.setattr(guard_module, "_active_guard", None)
