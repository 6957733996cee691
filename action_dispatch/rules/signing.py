"""
Webhook payload signing.

Receivers verify authenticity by recomputing HMAC-SHA256 over the raw request
body with their copy of the secret and comparing it with the
``x-hub-signature-256`` header, whose value is ``sha256=<hex digest>``.
The digest is computed over the exact bytes that are transmitted.
"""

import hashlib
import hmac
import json
from typing import Any, Optional

SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


def canonical_json(payload: Any) -> bytes:
    """Serialize ``payload`` deterministically as UTF-8 JSON bytes."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def sign(secret: str, body: bytes) -> str:
    """Return the hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signature_header(secret: str, body: bytes) -> str:
    """Header value for ``body``: ``sha256=<hex>``."""
    return f"{SIGNATURE_PREFIX}{sign(secret, body)}"


def verify_signature(secret: str, body: bytes, header_value: Optional[str]) -> bool:
    """Constant-time check of a received signature header."""
    if not header_value or not header_value.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(signature_header(secret, body), header_value)
