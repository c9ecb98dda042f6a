from __future__ import annotations

import hashlib
import hmac


def verify_signature(raw_payload: bytes | str, signature: str | None, secret: str | None) -> bool:
    """
    Sentry integration webhooks sign the raw body with HMAC-SHA256 (hex digest).
    No configured secret means verification is disabled.
    """
    if not secret:
        return True
    if not signature:
        return False
    body = raw_payload.encode("utf-8") if isinstance(raw_payload, str) else raw_payload
    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature.strip())
