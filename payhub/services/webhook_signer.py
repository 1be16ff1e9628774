"""Webhook payload signing — HMAC-SHA256 over the canonical JSON body.

The bytes that are signed are exactly the bytes sent as the request body, so
receivers verify by recomputing the HMAC over the raw body they received.

An endpoint with an empty secret still gets a signature (HMAC with an empty
key). That only proves integrity, not origin: empty-secret endpoints are not
authenticated and are not meant to be.
"""

import hashlib
import hmac
import json
import secrets
import string
from typing import Any, Optional

SIGNATURE_PREFIX = "sha256="
SECRET_PREFIX = "whsec_"
_SECRET_ALPHABET = string.ascii_letters + string.digits


def canonical_json(payload: Any) -> bytes:
    """Compact JSON with key order kept. ``/`` stays unescaped, non-ASCII becomes ``\\uXXXX``."""
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def sign_payload(payload: Any, secret: Optional[str]) -> str:
    """Hex HMAC-SHA256 of the canonical payload. Deterministic."""
    return hmac.new((secret or "").encode("utf-8"), canonical_json(payload), hashlib.sha256).hexdigest()


def signature_header(signature: str) -> str:
    return f"{SIGNATURE_PREFIX}{signature}"


def verify_signature(payload: Any, secret: Optional[str], header: str) -> bool:
    if not header or not header.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected, header[len(SIGNATURE_PREFIX):])


def mask_secret(secret: Optional[str]) -> Optional[str]:
    if not secret:
        return None
    if len(secret) <= 12:
        return "****"
    return f"{secret[:6]}…{secret[-4:]}"


def generate_secret() -> str:
    return SECRET_PREFIX + "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(40))
