"""
Webhook Signature Verification
==============================

Primitives for every inbound signing scheme we accept:

- Standard Webhooks (order sources): base64 HMAC-SHA256 over
  "{timestamp}.{webhook_id}.{body}", header "v1,<sig>" (space-separated list)
- Svix (Resend): same header format, content "{id}.{timestamp}.{body}",
  secret given as "whsec_<base64>"
- Hex HMAC-SHA256 of the raw body (InMobile)
- HS256 JWT (GatewayAPI)
- ECDSA P-256 / SHA-256 over timestamp + body (SendGrid)

Every function returns False instead of raising on malformed input.
All comparisons are constant-time.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional, Union

import jwt
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_der_public_key, load_pem_public_key

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def is_timestamp_fresh(
    timestamp: Optional[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Reject timestamps more than tolerance_seconds away from now (either way)."""
    try:
        ts = int(str(timestamp).strip())
    except (TypeError, ValueError):
        logger.warning(f"Invalid webhook timestamp: {timestamp!r}")
        return False

    current = int(now if now is not None else time.time())
    difference = abs(current - ts)
    if difference > tolerance_seconds:
        logger.warning(f"Webhook timestamp rejected: {difference}s off (tolerance {tolerance_seconds}s)")
        return False
    return True


def hmac_sha256_base64(secret: bytes, content: bytes) -> str:
    return base64.b64encode(hmac.new(secret, content, hashlib.sha256).digest()).decode("ascii")


def matches_v1_signature(signature_header: Optional[str], expected: str) -> bool:
    """True if any "v1,<sig>" entry in the header equals expected."""
    if not signature_header:
        return False
    for entry in signature_header.split(" "):
        version, _, value = entry.partition(",")
        if version != "v1" or not value:
            continue
        if hmac.compare_digest(value.encode("ascii", "ignore"), expected.encode("ascii")):
            return True
    return False


def verify_standard_webhook(
    secret: Union[str, bytes],
    webhook_id: Optional[str],
    timestamp: Optional[str],
    body: Union[str, bytes],
    signature_header: Optional[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Signature and freshness must both pass."""
    if not secret or not webhook_id or not timestamp or not signature_header:
        return False

    signed = f"{timestamp}.{webhook_id}.".encode("utf-8") + _to_bytes(body)
    expected = hmac_sha256_base64(_to_bytes(secret), signed)
    if not matches_v1_signature(signature_header, expected):
        logger.warning("Standard webhook signature mismatch")
        return False
    return is_timestamp_fresh(timestamp, tolerance_seconds, now)


def decode_svix_secret(secret: str) -> Optional[bytes]:
    raw = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        logger.error("Webhook secret is not valid base64")
        return None


def verify_svix_webhook(
    secret: str,
    svix_id: Optional[str],
    svix_timestamp: Optional[str],
    body: Union[str, bytes],
    signature_header: Optional[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    if not secret or not svix_id or not svix_timestamp or not signature_header:
        return False
    key = decode_svix_secret(secret)
    if key is None:
        return False

    signed = f"{svix_id}.{svix_timestamp}.".encode("utf-8") + _to_bytes(body)
    if not matches_v1_signature(signature_header, hmac_sha256_base64(key, signed)):
        logger.warning("Svix webhook signature mismatch")
        return False
    return is_timestamp_fresh(svix_timestamp, tolerance_seconds, now)


def verify_hmac_hex(secret: str, body: Union[str, bytes], signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()
    return hmac.compare_digest(
        expected.encode("ascii"), signature.strip().lower().encode("utf-8", "ignore")
    )


def verify_shared_secret(secret: str, provided: Optional[str]) -> bool:
    if not secret or not provided:
        return False
    return hmac.compare_digest(_to_bytes(secret), _to_bytes(provided))


def verify_jwt_hs256(token: Optional[str], secret: str) -> bool:
    if not secret or not token:
        return False
    try:
        jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
        return True
    except jwt.InvalidTokenError as e:
        logger.warning(f"Webhook JWT rejected: {e}")
        return False


def load_ecdsa_public_key(key: str) -> Optional[ec.EllipticCurvePublicKey]:
    """Accepts PEM, or the bare base64 DER string SendGrid shows in its UI."""
    try:
        if key.strip().startswith("-----BEGIN"):
            public_key = load_pem_public_key(key.encode("utf-8"))
        else:
            public_key = load_der_public_key(base64.b64decode(key.strip()))
    except (ValueError, binascii.Error) as e:
        logger.error(f"Invalid ECDSA verification key: {e}")
        return None
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        logger.error("Verification key is not an elliptic curve key")
        return None
    return public_key


def verify_ecdsa_signature(
    public_key: str,
    timestamp: Optional[str],
    body: Union[str, bytes],
    signature_b64: Optional[str],
) -> bool:
    if not public_key or not timestamp or not signature_b64:
        return False
    key = load_ecdsa_public_key(public_key)
    if key is None:
        return False
    try:
        signature = base64.b64decode(signature_b64)
        key.verify(signature, _to_bytes(timestamp) + _to_bytes(body), ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, binascii.Error, ValueError):
        logger.warning("ECDSA webhook signature mismatch")
        return False
