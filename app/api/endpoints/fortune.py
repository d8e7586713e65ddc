# app/api/endpoints/fortune.py
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.models.fortune import (
    ErrorResponse,
    FortuneResponse,
    PaymentRejectedResponse,
)
from app.x402.encoding import PAYMENT_SIGNATURE_HEADER
from app.x402.gate import PaymentGate

logger = logging.getLogger(__name__)
router = APIRouter()


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


def get_payment_gate(request: Request) -> PaymentGate:
    """Dependency returning the gate built at startup."""
    return request.app.state.payment_gate


@router.post(
    "/fortune",
    response_model=FortuneResponse,
    summary="Buy a Fortune",
    responses={
        402: {"model": PaymentRejectedResponse, "description": "Payment required, or payment rejected"},
        400: {"model": ErrorResponse, "description": "Malformed Payment-Signature header"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
        502: {"model": ErrorResponse, "description": "Facilitator unavailable"},
    },
)
async def buy_fortune(request: Request, gate: PaymentGate = Depends(get_payment_gate)) -> JSONResponse:
    """
    Returns a fortune in exchange for an x402 payment.

    Without a Payment-Signature header the response is 402 with a
    Payment-Required header describing how to pay. With a valid signed payment the
    payment is verified and settled through the facilitator, and the
    fortune is returned with a Payment-Response receipt header.
    """
    outcome = await gate.process(
        resource_url=str(request.url),
        payment_header=request.headers.get(PAYMENT_SIGNATURE_HEADER),
        client_ip=get_client_ip(request),
        is_disconnected=request.is_disconnected,
    )
    logger.info(f"POST /fortune -> {outcome.status_code} ({outcome.state.value})")
    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.body,
        headers=outcome.headers,
    )
