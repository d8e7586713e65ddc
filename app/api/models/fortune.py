# app/api/models/fortune.py
from pydantic import BaseModel, Field
from typing import Optional


class FortuneResponse(BaseModel):
    """Response model for a paid and settled fortune request."""
    fortune: str = Field(..., description="The purchased fortune", example="Your keys, your fortune.")
    transaction: Optional[str] = Field(default=None, description="On-chain settlement transaction id")


class PaymentRejectedResponse(BaseModel):
    """Body of a 402 returned when the facilitator rejects the payment."""
    error: str = Field(..., example="Payment verification failed")
    reason: Optional[str] = Field(default=None, example="insufficient funds")


class ErrorResponse(BaseModel):
    """Body returned for malformed payment headers and server-side faults."""
    error: str
    details: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    facilitator: str
