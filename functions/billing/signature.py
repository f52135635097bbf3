"""
Stripe webhook signature verification.

Verification runs over the exact bytes Stripe sent. Never re-serialize the
parsed body before checking it: json.dumps is not guaranteed to reproduce
Stripe's byte layout.
"""

import base64
import binascii
import json
import logging
import os
from typing import Optional, Union

import stripe

from billing.errors import SignatureError

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = int(os.environ.get("WEBHOOK_TOLERANCE_SECONDS") or "300")


def raw_body_from_event(event: dict) -> bytes:
    """Return the undecoded request body of an API Gateway proxy event."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SignatureError(f"Body is not valid base64: {e}") from e
    if isinstance(body, bytes):
        return body
    return body.encode("utf-8")


def get_signature_header(headers: Optional[dict]) -> Optional[str]:
    """API Gateway may or may not lower-case header names."""
    headers = headers or {}
    for name, value in headers.items():
        if name.lower() == "stripe-signature":
            return value
    return None


def verify(
    raw_body: Union[bytes, str],
    signature_header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE,
) -> dict:
    """Check the Stripe-Signature header and return the decoded event payload.

    Args:
        raw_body: Request body exactly as received
        signature_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum age of the signed timestamp in seconds

    Raises:
        SignatureError: missing header, digest mismatch, stale timestamp, or a
            body that is not a JSON object.
    """
    if not signature_header:
        raise SignatureError("Missing Stripe-Signature header")
    if not secret:
        raise SignatureError("Webhook signing secret not configured")

    try:
        payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
    except UnicodeDecodeError as e:
        raise SignatureError("Body is not valid UTF-8") from e

    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe signature: {e}")
        raise SignatureError("Invalid signature") from e

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise SignatureError("Signed body is not valid JSON") from e

    if not isinstance(data, dict):
        raise SignatureError("Signed body is not a JSON object")
    return data
