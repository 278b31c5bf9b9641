"""
Webhook signature verification.

Each platform signs the raw request body with HMAC-SHA256 using the channel's
shared secret, but encodes the digest differently:

    shopify      base64(digest)                  X-Shopify-Hmac-SHA256
    woocommerce  "sha256=" + hex(digest)         X-WC-Webhook-Signature
    custom       hex(digest), optional "sha256="  X-Webhook-Signature / X-Signature

Verification always runs on the exact bytes received, never on re-serialized
JSON, and never logs the secret.
"""

import base64
import hashlib
import hmac
from typing import Mapping, Optional

# Checked in this order; first present wins
SIGNATURE_HEADERS = (
    "X-Shopify-Hmac-SHA256",
    "X-WC-Webhook-Signature",
    "X-Webhook-Signature",
    "X-Signature",
)


def _digest(raw_body: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()


def sign(raw_body: bytes, secret: str, platform: str) -> str:
    """Header value the given platform would send for this body."""
    digest = _digest(raw_body, secret)
    if platform == "shopify":
        return base64.b64encode(digest).decode()
    if platform == "woocommerce":
        return "sha256=" + digest.hex()
    return digest.hex()


def verify(raw_body: bytes, signature: Optional[str], secret: Optional[str], platform: str) -> bool:
    """
    True only when `signature` matches the platform's encoding of
    HMAC-SHA256(secret, raw_body). Missing signature or secret is False.
    """
    if not signature or not secret:
        return False
    signature = signature.strip()
    digest = _digest(raw_body, secret)

    if platform == "shopify":
        expected = base64.b64encode(digest).decode()
        return hmac.compare_digest(signature.encode(), expected.encode())

    if platform == "woocommerce":
        expected = "sha256=" + digest.hex()
        return hmac.compare_digest(signature.encode(), expected.encode())

    # custom: bare hex or sha256= prefixed
    candidate = signature[len("sha256="):] if signature.lower().startswith("sha256=") else signature
    return hmac.compare_digest(candidate.lower().encode(), digest.hex().encode())


def extract_signature(headers: Mapping[str, str]) -> Optional[str]:
    """First signature header present, in SIGNATURE_HEADERS order."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name.lower())
        if value:
            return value
    return None
