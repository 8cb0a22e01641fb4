"""RSA request-signature verification.

Clients sign the canonical form of their request parameters
(``key1=value1&key2=value2``, keys sorted, empty values dropped) with
RSA PKCS#1 v1.5 over SHA-256 and send the base64 signature as the
``sign`` parameter.
"""

import base64
import binascii
import json
import logging
from collections.abc import Mapping

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .exceptions import ConfigurationError
from .request import Request, load_json

logger = logging.getLogger(__name__)

SIGN_PARAM = "sign"


def load_public_key(base64_public_key: str) -> rsa.RSAPublicKey:
    """Load a base64-encoded DER (SubjectPublicKeyInfo) RSA public key.

    Raises:
        ConfigurationError: If the key cannot be decoded or is not RSA
    """
    try:
        key = serialization.load_der_public_key(
            base64.b64decode(base64_public_key, validate=True)
        )
    except (binascii.Error, ValueError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(f"Invalid signature public key: {e}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise ConfigurationError("Signature public key must be an RSA key")
    return key


def build_sign_content(params: Mapping[str, str | None]) -> str:
    """Canonical signing string: non-empty params sorted by key, ``&``-joined."""
    return "&".join(
        f"{key}={value}" for key, value in sorted(params.items()) if value
    )


def _stringify(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def collect_params(request: Request) -> dict[str, str | None]:
    """Gather the parameters covered by the signature.

    Query/form parameters come first; for JSON requests the body fields are
    merged on top with their values stringified.

    Raises:
        ValueError: If a JSON body cannot be decoded into an object
    """
    params = request.single_params()

    if request.mime_type == "application/json" and request.body:
        body = load_json(request.body.decode("utf-8"))
        if not isinstance(body, dict):
            raise ValueError("JSON body is not an object")
        params.update({key: _stringify(value) for key, value in body.items()})

    return params


class SignatureVerifier:
    """Verify request signatures against a configured public key.

    Args:
        public_key: Base64-encoded DER public key
    """

    def __init__(self, public_key: str) -> None:
        self._public_key = load_public_key(public_key)

    def verify_content(self, content: str, signature: str) -> bool:
        """Check a base64 signature over ``content``. Never raises."""
        try:
            self._public_key.verify(
                base64.b64decode(signature, validate=True),
                content.encode("utf-8"),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except (InvalidSignature, binascii.Error, ValueError):
            return False
        return True

    def verify(self, request: Request) -> bool:
        """Verify the ``sign`` parameter of a request.

        Fails closed: a missing signature, an undecodable body or any
        cryptographic error returns False.
        """
        try:
            params = collect_params(request)
        except ValueError as e:
            logger.warning("Could not read signed parameters: %s", e)
            return False

        client_sign = params.pop(SIGN_PARAM, None)
        if not client_sign:
            logger.warning("Signature verification failed: missing '%s'", SIGN_PARAM)
            return False

        content = build_sign_content(params)
        logger.debug("Verifying signature, content: %s, sign: %s", content, client_sign)

        verified = self.verify_content(content, client_sign)
        if verified:
            logger.info("Request signature verified")
        else:
            logger.warning("Signature verification failed, parameters may be tampered")
        return verified
