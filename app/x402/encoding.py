# app/x402/encoding.py
"""
Header codecs for the x402 protocol values.

Every header value is base64 over UTF-8 JSON; the SDK's header helpers do
the encoding. Decoding an untrusted Payment-Signature header is wrapped so
that any bad input surfaces as MalformedPayload. The codec only checks
structure; amounts, recipients and signatures are left to the facilitator.
"""
import json
import logging

from x402.http import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    decode_payment_required_header,
    encode_payment_required_header,
    encode_payment_response_header,
    encode_payment_signature_header,
    safe_base64_decode,
    safe_base64_encode,
)

from app.x402.exceptions import MalformedPayload
from app.x402.types import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequired,
    SettlementReceipt,
)

logger = logging.getLogger(__name__)

__all__ = [
    "PAYMENT_REQUIRED_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "PAYMENT_SIGNATURE_HEADER",
    "decode_challenge",
    "decode_payload",
    "encode_challenge",
    "encode_payload",
    "encode_receipt",
    "safe_base64_decode",
    "safe_base64_encode",
]

# Top-level keys every Payment-Signature payload must carry
REQUIRED_PAYLOAD_FIELDS = ("x402Version", "accepted", "payload")


def encode_challenge(payment_required: PaymentRequired) -> str:
    """Encode the 402 envelope for the Payment-Required header."""
    return encode_payment_required_header(payment_required)


def decode_challenge(header_value: str) -> PaymentRequired:
    """Decode a Payment-Required header. Used by paying clients."""
    return decode_payment_required_header(header_value)


def encode_payload(payment_payload: PaymentPayload) -> str:
    """Encode a payment payload for the Payment-Signature header. Used by paying clients."""
    return encode_payment_signature_header(payment_payload)


def decode_payload(header_value: str) -> PaymentPayload:
    """
    Decode a Payment-Signature header into a PaymentPayload.

    Args:
        header_value: Base64-encoded JSON payment payload

    Returns:
        The decoded PaymentPayload

    Raises:
        MalformedPayload: If the value is not base64, not JSON, not an
            object, lacks a required field, or is not an x402 v2 payload.
    """
    header_value = (header_value or "").strip()
    if not header_value:
        raise MalformedPayload("Payment-Signature header is empty")

    try:
        decoded_str = safe_base64_decode(header_value)
    except ValueError as e:
        logger.warning(f"Failed to decode Payment-Signature header: invalid base64: {e}")
        raise MalformedPayload("Payment-Signature header is not valid base64") from e

    try:
        payload_dict = json.loads(decoded_str)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Failed to parse Payment-Signature header JSON: {type(e).__name__}")
        raise MalformedPayload("Payment-Signature header is not valid JSON") from e

    if not isinstance(payload_dict, dict):
        raise MalformedPayload("Payment-Signature header must encode a JSON object")

    missing = [name for name in REQUIRED_PAYLOAD_FIELDS if name not in payload_dict]
    if missing:
        raise MalformedPayload(f"Payment payload is missing required fields: {', '.join(missing)}")

    if payload_dict["x402Version"] != X402_VERSION:
        raise MalformedPayload(f"Unsupported x402Version: {payload_dict['x402Version']!r}")

    try:
        return PaymentPayload.model_validate(payload_dict)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Payment-Signature payload failed structural checks: {e}")
        raise MalformedPayload(f"Payment payload has an invalid structure: {e}") from e


def encode_receipt(receipt: SettlementReceipt) -> str:
    """Encode a settlement receipt for the Payment-Response header."""
    return encode_payment_response_header(receipt)
