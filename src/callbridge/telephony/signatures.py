"""
Webhook signature verification for telephony carriers.

- Twilio: HMAC-SHA1 over the full URL plus sorted POST params, base64
  (header ``X-Twilio-Signature``, keyed with the account auth token).
- Telnyx: Ed25519 over ``"{timestamp}|{raw body}"`` (headers
  ``telnyx-signature-ed25519`` / ``telnyx-timestamp``, verified with the
  account public key).
- Vonage: HS256 JWT in ``Authorization: Bearer`` signed with the signature
  secret; its ``payload_hash`` claim is the SHA-256 of the raw body.

All functions are synchronous, side-effect free and return False instead of
raising on bad input. Telnyx and Vonage sign the exact request bytes, so their
verifiers only accept the raw body (bytes or str); a parsed dict never verifies.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl

import jwt
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from callbridge.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TELNYX_TOLERANCE_SECONDS = 300


def _raw_body(payload: Any) -> bytes | None:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return None


def _form_params(payload: bytes | str | Mapping[str, Any]) -> dict[str, list[str]]:
    if isinstance(payload, Mapping):
        params: dict[str, list[str]] = {}
        for key, value in payload.items():
            values = value if isinstance(value, (list, tuple)) else [value]
            params[str(key)] = ["" if v is None else str(v) for v in values]
        return params

    text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    grouped: dict[str, list[str]] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        grouped.setdefault(key, []).append(value)
    return grouped


def compute_twilio_signature(
    auth_token: str, url: str, payload: bytes | str | Mapping[str, Any]
) -> str:
    data = url
    params = _form_params(payload)
    for key in sorted(params):
        for value in sorted(params[key]):
            data += key + value
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(
    auth_token: str,
    signature: str,
    url: str | None,
    payload: bytes | str | Mapping[str, Any],
) -> bool:
    if not auth_token or not signature or not url:
        return False
    try:
        expected = compute_twilio_signature(auth_token, url, payload)
    except UnicodeDecodeError:
        logger.warning("Twilio webhook body is not valid UTF-8")
        return False
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def verify_telnyx_signature(
    public_key: str,
    signature: str,
    timestamp: str | None,
    payload: bytes | str,
    *,
    tolerance_seconds: int = DEFAULT_TELNYX_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    if not public_key or not signature or not timestamp:
        return False
    body = _raw_body(payload)
    if body is None:
        logger.warning("Telnyx signature needs the raw request body")
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        logger.warning(
            "Telnyx webhook timestamp outside tolerance",
            extra={"timestamp": sent_at, "tolerance_seconds": tolerance_seconds},
        )
        return False

    try:
        key = Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key, validate=True))
        raw_signature = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Telnyx public key or signature is not valid base64 Ed25519 data")
        return False

    message = f"{timestamp}|".encode("utf-8") + body
    try:
        key.verify(raw_signature, message)
    except InvalidSignature:
        return False
    return True


def verify_vonage_signature(
    signature_secret: str,
    token: str,
    payload: bytes | str,
) -> bool:
    if not signature_secret or not token:
        return False
    body = _raw_body(payload)
    if body is None:
        logger.warning("Vonage signature needs the raw request body")
        return False

    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    try:
        claims = jwt.decode(token, signature_secret, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        return False

    payload_hash = claims.get("payload_hash")
    if payload_hash is None:
        return True
    expected = hashlib.sha256(body).hexdigest()
    return hmac.compare_digest(str(payload_hash).lower().encode("utf-8"), expected.encode("utf-8"))
