import hashlib
import hmac
import time
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from cctv_magic.core.config import get_settings
from cctv_magic.core.exceptions import SignatureInvalidError

SESSION_MAX_AGE = 7 * 24 * 3600  # 7 days

_SIGNATURE_PREFIXES = ("sha256=", "v1,", "v1=")


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="cctv-magic-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    serializer = get_session_serializer()
    return serializer.dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None


def compute_webhook_signature(secret: str, timestamp: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 over ``{timestamp}.{raw body}``."""
    signed = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def _strip_prefix(signature: str) -> str:
    signature = signature.strip()
    for prefix in _SIGNATURE_PREFIXES:
        if signature.startswith(prefix):
            return signature[len(prefix):]
    return signature


def verify_webhook_signature(
    payload: bytes,
    signature: str | None,
    timestamp: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Raise SignatureInvalidError unless the signature matches and the timestamp is fresh."""
    if not signature or not timestamp:
        raise SignatureInvalidError("Missing webhook signature")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise SignatureInvalidError("Malformed webhook timestamp") from e
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance_seconds:
        raise SignatureInvalidError("Webhook timestamp outside tolerance")
    expected = compute_webhook_signature(secret, timestamp, payload)
    if not hmac.compare_digest(expected, _strip_prefix(signature)):
        raise SignatureInvalidError("Invalid webhook signature")
