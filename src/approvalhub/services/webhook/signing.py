"""Webhook body serialization and HMAC signing.

Receivers verify a delivery by recomputing HMAC-SHA256 over the exact
request body bytes with the registration secret and comparing it to the
``X-Approval-Signature`` header.
"""

import hashlib
import hmac
import json
import secrets
from typing import Any

SIGNATURE_HEADER = "X-Approval-Signature"
EVENT_HEADER = "X-Approval-Event"
WEBHOOK_ID_HEADER = "X-Approval-Webhook-ID"
ATTEMPT_HEADER = "X-Approval-Delivery-Attempt"

SECRET_BYTES = 32


def generate_secret() -> str:
    """New registration secret: 32 random bytes, hex encoded."""
    return secrets.token_hex(SECRET_BYTES)


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Serialize a payload deterministically (sorted keys, compact)."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False
    ).encode("utf-8")


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the body bytes."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a received signature."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)
