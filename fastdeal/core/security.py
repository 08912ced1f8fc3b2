import hashlib
import hmac
import time
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from fastdeal.core.config import get_settings

SESSION_MAX_AGE_SECONDS = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="fastdeal-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None


def _parse_card_signature_header(header: str) -> tuple[int | None, list[str]]:
    """Split `t=1700000000,v1=abc,v1=def` into (timestamp, [v1 signatures])."""
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t" and value.isdigit():
            timestamp = int(value)
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def sign_card_webhook(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_card_webhook(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    if not header or not secret:
        return False
    timestamp, signatures = _parse_card_signature_header(header)
    if timestamp is None or not signatures:
        return False
    current = time.time() if now is None else now
    if tolerance_seconds and abs(current - timestamp) > tolerance_seconds:
        return False
    expected = sign_card_webhook(payload, secret, timestamp)
    return any(hmac.compare_digest(expected, sig) for sig in signatures)
