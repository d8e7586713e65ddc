# app/x402/exceptions.py
"""
x402 payment gate exception hierarchy.

Every failure the gate can meet while serving a paid request maps to one
of these types, and every type maps to exactly one HTTP outcome.
"""
from typing import Optional


class X402Error(Exception):
    """Base class for payment gate failures."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class MalformedPayload(X402Error):
    """The Payment-Signature header is not a decodable payment payload."""

    def __init__(self, message: str = "Invalid payment payload"):
        super().__init__(message)


class VerificationFailed(X402Error):
    """The facilitator (or local pre-check) rejected the claimed payment."""

    def __init__(self, reason: Optional[str] = None, payer: Optional[str] = None):
        super().__init__("Payment verification failed", reason or "Unknown reason")
        self.payer = payer


class SettlementFailed(X402Error):
    """The payment verified but could not be settled on-chain."""

    def __init__(self, reason: Optional[str] = None, payer: Optional[str] = None):
        super().__init__("Payment settlement failed", reason or "Unknown reason")
        self.payer = payer


class FacilitatorUnreachable(X402Error):
    """Transport failure, timeout or unreadable response from the facilitator."""

    def __init__(self, operation: str, detail: str):
        super().__init__(f"Facilitator {operation} call failed: {detail}", detail)
        self.operation = operation


class InternalFault(X402Error):
    """Any other unexpected failure while serving a paid request."""
