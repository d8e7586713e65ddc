# app/x402/types.py
"""
x402 protocol value types.

The wire models come from the x402 SDK (v2 schemas, camelCase on the wire).
Facilitator replies are read with relaxed copies of the SDK responses: a
rejected settlement usually carries no transaction, and some facilitators
report the reason in a plain `error` field.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel
from x402.schemas import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequired,
    PaymentRequirements,
    ResourceInfo,
)
from x402.schemas import SettleResponse as SDKSettleResponse
from x402.schemas import VerifyResponse as SDKVerifyResponse

__all__ = [
    "X402_VERSION",
    "PaymentPayload",
    "PaymentRequired",
    "PaymentRequirements",
    "ResourceInfo",
    "SettleResponse",
    "SettlementReceipt",
    "VerifyResponse",
    "to_wire",
]


def to_wire(model: BaseModel) -> Dict[str, Any]:
    """Dump a protocol model to the JSON-ready dict sent over the wire."""
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


class VerifyResponse(SDKVerifyResponse):
    error: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        return self.invalid_reason or self.invalid_message or self.error


class SettleResponse(SDKSettleResponse):
    transaction: Optional[str] = None
    network: Optional[str] = None
    error: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        return self.error_reason or self.error_message or self.error


# The Payment-Response header carries the SDK's settle result unchanged
SettlementReceipt = SDKSettleResponse
