"""Webhook Signature Verification

Rejects forged provider notifications. Every check compares in constant time
and returns False, never raises, on a missing secret or malformed input.
"""

import base64
import hashlib
import hmac
import logging
from typing import Mapping, Optional, Union

import stripe

logger = logging.getLogger(__name__)

STRIPE_TOLERANCE_SECONDS = 300

SHOPIFY_HMAC_HEADER = "X-Shopify-Hmac-Sha256"
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup over any mapping"""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def verify_shopify_webhook(
    raw_body: bytes, hmac_header: Optional[str], secret: Optional[str]
) -> bool:
    """Marketplace scheme: base64 HMAC-SHA256 of the raw body"""
    if not hmac_header or not secret:
        return False

    try:
        digest = hmac.new(_to_bytes(secret), _to_bytes(raw_body), hashlib.sha256).digest()
        expected = base64.b64encode(digest)
        return hmac.compare_digest(expected, _to_bytes(hmac_header.strip()))
    except (TypeError, ValueError) as e:
        logger.error(f"Shopify HMAC verification error: {e}")
        return False


def verify_stripe_webhook(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance: int = STRIPE_TOLERANCE_SECONDS,
) -> bool:
    """Card processor scheme: "t=...,v1=..." header checked by the SDK"""
    if not signature_header or not secret:
        return False

    try:
        payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance=tolerance)
        return True
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe signature rejected: {e}")
        return False
    except (UnicodeDecodeError, ValueError) as e:
        logger.error(f"Stripe signature verification error: {e}")
        return False
