"""Payment-gateway signature verification: constant-time HMAC.

Security contract:
- All comparisons use hmac.compare_digest() (no data-dependent early exit)
- Digest is computed over the raw, unparsed request body
- Missing secret -> verification always fails (fail-closed)
- Verifiers return False on any malformed input; they never raise
"""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected_hex: str, provided: str | None) -> bool:
    if not provided or not isinstance(provided, str):
        return False
    try:
        provided_bytes = provided.encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected_hex.encode("ascii"), provided_bytes)


def verify(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a webhook's hex HMAC-SHA256 signature.

    Args:
        raw_body: Request body exactly as received
        signature_header: Value of the signature header (hex digest)
        secret: Shared webhook secret

    Returns:
        True iff the signature matches
    """
    if not secret:
        logger.warning("Webhook secret not set, rejecting webhook")
        return False
    if not isinstance(raw_body, (bytes, bytearray)):
        return False
    return _matches(_hex_hmac(secret, bytes(raw_body)), signature_header)


def verify_payment_signature(
    gateway_order_id: str,
    payment_id: str,
    signature: str | None,
    secret: str,
) -> bool:
    """Verify the checkout callback signature.

    The gateway signs ``"{order_id}|{payment_id}"`` with the API key secret
    and hands the hex digest to the browser after payment.
    """
    if not secret:
        logger.warning("Payment key secret not set, rejecting checkout signature")
        return False
    if not gateway_order_id or not payment_id:
        return False
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return _matches(_hex_hmac(secret, message), signature)
