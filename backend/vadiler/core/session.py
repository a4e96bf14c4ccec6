"""
Signed customer session cookie

Token format: base64url(json payload) + "." + base64url(HMAC-SHA256(secret, body))
Payload: {customerId, email, issuedAt, expiresAt} (epoch milliseconds)
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CUSTOMER_COOKIE = "vadiler_customer_auth"
SESSION_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


class SessionPayload(BaseModel):
    customerId: str
    email: str
    issuedAt: int
    expiresAt: int


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(secret: str, body: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def now_ms() -> int:
    return int(time.time() * 1000)


def create_session_payload(customer_id: str, email: str, max_age_seconds: int = SESSION_MAX_AGE_SECONDS) -> SessionPayload:
    issued = now_ms()
    return SessionPayload(
        customerId=str(customer_id),
        email=email,
        issuedAt=issued,
        expiresAt=issued + max_age_seconds * 1000,
    )


def sign_session(secret: str, payload: SessionPayload) -> str:
    body = _b64url_encode(
        json.dumps(payload.model_dump(), separators=(",", ":")).encode("utf-8")
    )
    return f"{body}.{_sign(secret, body)}"


def verify_session(secret: str, token: Optional[str]) -> Optional[SessionPayload]:
    """
    Verify a session token.

    Returns the payload, or None when the token is malformed, tampered,
    incomplete or expired.
    """
    parts = (token or "").split(".")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    body, sig = parts[0], parts[1]
    if not sig.isascii():
        return None

    if not hmac.compare_digest(_sign(secret, body).encode("ascii"), sig.encode("ascii")):
        return None

    try:
        data = json.loads(_b64url_decode(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Session payload could not be decoded: {e}")
        return None

    if not isinstance(data, dict):
        return None
    if not data.get("customerId") or not data.get("email") or not data.get("expiresAt"):
        return None

    try:
        expires_at = int(data["expiresAt"])
        issued_at = int(data.get("issuedAt") or 0)
    except (TypeError, ValueError):
        return None

    if now_ms() > expires_at:
        return None

    return SessionPayload(
        customerId=str(data["customerId"]),
        email=str(data["email"]),
        issuedAt=issued_at,
        expiresAt=expires_at,
    )
