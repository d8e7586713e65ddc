# app/x402/gate.py
"""
Payment gate for x402-protected resources.

The gate turns one inbound request into one outcome:
1. No Payment-Signature header: 402 with the Payment-Required challenge
2. Header present: decode it (malformed input is rejected, never crashes)
3. Verify the payment with the facilitator against the server's own requirements
4. Settle the payment with the facilitator
5. Deliver the artifact with a Payment-Response receipt

States: NO_PAYMENT -> DECODED -> VERIFYING -> VERIFIED -> SETTLING -> FULFILLED,
with REJECTED and FAULTED as terminal error states. Every failure is mapped
to a GateOutcome here; nothing escapes to the web framework.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.config import GatewayConfig
from app.services.facilitator import FacilitatorClient
from app.services.fortunes import FortuneHandler
from app.x402.audit import (
    generate_request_id,
    log_error,
    log_payment_failed,
    log_payment_received,
    log_payment_required_sent,
    log_payment_settled,
    log_payment_verified,
    log_settlement_undeliverable,
)
from app.x402.encoding import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    decode_payload,
    encode_challenge,
    encode_receipt,
)
from app.x402.exceptions import (
    FacilitatorUnreachable,
    InternalFault,
    MalformedPayload,
    SettlementFailed,
    VerificationFailed,
)
from app.x402.requirements import RequirementsBuilder
from app.x402.types import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    SettlementReceipt,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

# Fields of the client's `accepted` requirements compared by the local pre-check
PRECHECK_FIELDS = ("scheme", "network", "amount", "asset", "pay_to")


class GateState(Enum):
    NO_PAYMENT = "no_payment"
    DECODED = "decoded"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    SETTLING = "settling"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    FAULTED = "faulted"


@dataclass(frozen=True)
class GateOutcome:
    """Terminal result of one pass through the gate, ready to become an HTTP response."""
    state: GateState
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    receipt: Optional[SettlementReceipt] = None
    error: Optional[Exception] = None


@dataclass
class _RequestContext:
    request_id: str
    resource_url: str
    client_ip: Optional[str]
    state: GateState = GateState.NO_PAYMENT
    payer: Optional[str] = None

    def advance(self, state: GateState) -> None:
        logger.debug(f"x402: [{self.request_id}] {self.state.name} -> {state.name}")
        self.state = state


class PaymentGate:
    """
    Drives the verify-then-settle protocol for a protected resource.

    Holds only read-only collaborators; every call to `process` is
    independent. The two facilitator calls run in worker threads so other
    requests keep moving while one waits on the facilitator.
    """

    def __init__(
        self,
        config: GatewayConfig,
        facilitator: FacilitatorClient,
        handler: FortuneHandler,
        builder: Optional[RequirementsBuilder] = None
    ):
        self.config = config
        self.facilitator = facilitator
        self.handler = handler
        self.builder = builder or RequirementsBuilder(config)

    async def process(
        self,
        resource_url: str,
        payment_header: Optional[str],
        client_ip: Optional[str] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None
    ) -> GateOutcome:
        """
        Run one request through the gate.

        Args:
            resource_url: Full URL of the requested resource
            payment_header: Raw Payment-Signature header value, if any
            client_ip: Client address for audit records
            is_disconnected: Coroutine function reporting whether the client went away

        Returns:
            GateOutcome describing the response to send
        """
        ctx = _RequestContext(
            request_id=generate_request_id(),
            resource_url=resource_url,
            client_ip=client_ip,
        )

        if not payment_header:
            return self._challenge(ctx)

        try:
            # Requirements are always rebuilt here; the ones inside the
            # client's payload are never forwarded to the facilitator.
            requirements = self.builder.build(resource_url)

            payload = decode_payload(payment_header)
            ctx.advance(GateState.DECODED)
            logger.info(f"x402: [{ctx.request_id}] Payment payload received from {client_ip}")
            log_payment_received(
                client_ip=client_ip,
                claimed_amount=payload.accepted.amount,
                network=payload.accepted.network,
                request_id=ctx.request_id
            )

            if self.config.local_precheck:
                self._precheck(payload.accepted, requirements)

            verify_result = None
            if not self.config.skip_verify:
                verify_result = await self._verify(ctx, payload, requirements)

            settle_result = await self._settle(ctx, payload, requirements)
            return await self._fulfil(ctx, verify_result, settle_result, is_disconnected)

        except MalformedPayload as e:
            logger.warning(f"x402: [{ctx.request_id}] Malformed Payment-Signature header from {client_ip}: {e}")
            log_payment_failed(client_ip, str(e), stage=ctx.state.value, request_id=ctx.request_id)
            return self._terminal(
                ctx, GateState.REJECTED, 400,
                {"error": "Invalid payment payload", "details": str(e)}, e
            )
        except VerificationFailed as e:
            logger.warning(f"x402: [{ctx.request_id}] Payment verification failed: {e.reason}")
            log_payment_failed(client_ip, e.reason, stage=ctx.state.value,
                               wallet_address=e.payer, request_id=ctx.request_id)
            return self._terminal(
                ctx, GateState.REJECTED, 402,
                {"error": "Payment verification failed", "reason": e.reason}, e
            )
        except SettlementFailed as e:
            logger.warning(f"x402: [{ctx.request_id}] Payment settlement failed: {e.reason}")
            log_payment_failed(client_ip, e.reason, stage=ctx.state.value,
                               wallet_address=e.payer, request_id=ctx.request_id)
            return self._terminal(
                ctx, GateState.REJECTED, 402,
                {"error": "Payment settlement failed", "reason": e.reason}, e
            )
        except FacilitatorUnreachable as e:
            logger.error(f"x402: [{ctx.request_id}] {e}")
            log_error(client_ip, "facilitator_unreachable", str(e),
                      context={"stage": ctx.state.value}, request_id=ctx.request_id)
            return self._terminal(
                ctx, GateState.FAULTED, 502,
                {"error": "Facilitator unavailable", "details": str(e)}, e
            )
        except Exception as e:
            logger.error(f"x402: [{ctx.request_id}] Error processing payment: {e}", exc_info=True)
            log_error(client_ip, type(e).__name__, str(e),
                      context={"stage": ctx.state.value}, request_id=ctx.request_id)
            fault = InternalFault("Unexpected error while processing payment")
            return self._terminal(
                ctx, GateState.FAULTED, 500,
                {"error": "Internal server error", "details": str(fault)}, fault
            )

    def _challenge(self, ctx: _RequestContext) -> GateOutcome:
        payment_required = self.builder.build_payment_required(ctx.resource_url)
        accepted = payment_required.accepts[0]

        logger.info(f"x402: [{ctx.request_id}] No Payment-Signature header, returning 402 for {accepted.amount} {accepted.asset[:10]}...")
        log_payment_required_sent(
            client_ip=ctx.client_ip,
            amount=accepted.amount,
            asset=accepted.asset,
            network=accepted.network,
            pay_to=accepted.pay_to,
            resource=ctx.resource_url,
            request_id=ctx.request_id
        )
        return GateOutcome(
            state=GateState.NO_PAYMENT,
            status_code=402,
            body={"error": "Payment required", "x402Version": X402_VERSION},
            headers={PAYMENT_REQUIRED_HEADER: encode_challenge(payment_required)},
        )

    def _terminal(
        self,
        ctx: _RequestContext,
        state: GateState,
        status_code: int,
        body: Dict[str, Any],
        error: Exception
    ) -> GateOutcome:
        ctx.advance(state)
        return GateOutcome(state=state, status_code=status_code, body=body, error=error)

    def _precheck(self, claimed: PaymentRequirements, requirements: PaymentRequirements) -> None:
        """Reject a payload whose claimed requirements differ from the server's."""
        mismatched = [
            name for name in PRECHECK_FIELDS
            if getattr(claimed, name) != getattr(requirements, name)
        ]
        if mismatched:
            raise VerificationFailed(f"requirements_mismatch: {', '.join(mismatched)}")

    async def _call_facilitator(
        self,
        operation: str,
        call: Callable[[PaymentPayload, PaymentRequirements], Any],
        payload: PaymentPayload,
        requirements: PaymentRequirements
    ) -> Any:
        timeout = self.config.call_timeout_seconds
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(call, payload, requirements),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise FacilitatorUnreachable(operation, f"timed out after {timeout}s") from e

    async def _verify(
        self,
        ctx: _RequestContext,
        payload: PaymentPayload,
        requirements: PaymentRequirements
    ) -> VerifyResponse:
        ctx.advance(GateState.VERIFYING)
        logger.info(f"x402: [{ctx.request_id}] Verifying payment with facilitator...")
        result = await self._call_facilitator("verify", self.facilitator.verify, payload, requirements)

        log_payment_verified(
            client_ip=ctx.client_ip,
            payer=result.payer,
            is_valid=result.is_valid,
            invalid_reason=result.reason,
            request_id=ctx.request_id
        )
        if not result.is_valid:
            raise VerificationFailed(result.reason, payer=result.payer)

        ctx.payer = result.payer
        ctx.advance(GateState.VERIFIED)
        logger.info(f"x402: [{ctx.request_id}] Payment verified for payer {result.payer}")
        return result

    async def _settle(
        self,
        ctx: _RequestContext,
        payload: PaymentPayload,
        requirements: PaymentRequirements
    ) -> SettleResponse:
        ctx.advance(GateState.SETTLING)
        logger.info(f"x402: [{ctx.request_id}] Settling payment...")

        # The worker thread outlives both a timeout and a cancelled request,
        # so its outcome is tracked on the inner task either way.
        timeout = self.config.call_timeout_seconds
        settle_task = asyncio.ensure_future(
            asyncio.to_thread(self.facilitator.settle, payload, requirements)
        )
        try:
            result = await asyncio.wait_for(asyncio.shield(settle_task), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"x402: [{ctx.request_id}] Settlement timed out after {timeout}s; awaiting settlement outcome")
            settle_task.add_done_callback(partial(self._settled_late, ctx, "settle_timeout"))
            raise FacilitatorUnreachable("settle", f"timed out after {timeout}s") from e
        except asyncio.CancelledError:
            logger.warning(f"x402: [{ctx.request_id}] Request cancelled while settling; awaiting settlement outcome")
            settle_task.add_done_callback(partial(self._settled_late, ctx, "request_cancelled"))
            raise

        payer = ctx.payer or result.payer
        log_payment_settled(
            client_ip=ctx.client_ip,
            payer=payer,
            transaction=result.transaction,
            network=self.config.network,
            success=result.success,
            error_reason=result.reason,
            request_id=ctx.request_id
        )
        if not result.success:
            raise SettlementFailed(result.reason, payer=payer)

        ctx.payer = payer
        logger.info(f"x402: [{ctx.request_id}] Payment settled! Transaction: {result.transaction}")
        return result

    def _settled_late(self, ctx: _RequestContext, cause: str, task: "asyncio.Future") -> None:
        """Record a settlement that finished after its request stopped waiting."""
        if task.cancelled():
            logger.warning(f"x402: [{ctx.request_id}] Settlement call cancelled; outcome unknown")
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"x402: [{ctx.request_id}] Late settlement failed ({cause}): {error}")
            return
        result = task.result()
        if not result.success:
            logger.info(f"x402: [{ctx.request_id}] Late settlement was rejected ({cause}): {result.reason}")
            return
        self._record_undeliverable(ctx, result.transaction, ctx.payer or result.payer, cause)

    def _record_undeliverable(
        self,
        ctx: _RequestContext,
        transaction: Optional[str],
        payer: Optional[str],
        cause: str
    ) -> None:
        logger.error(
            f"x402: [{ctx.request_id}] Payment settled but response undeliverable "
            f"(cause={cause}, transaction={transaction}, payer={payer})"
        )
        log_settlement_undeliverable(
            client_ip=ctx.client_ip,
            payer=payer,
            transaction=transaction,
            network=self.config.network,
            cause=cause,
            request_id=ctx.request_id
        )

    async def _fulfil(
        self,
        ctx: _RequestContext,
        verify_result: Optional[VerifyResponse],
        settle_result: SettleResponse,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]]
    ) -> GateOutcome:
        payer = (verify_result.payer if verify_result else None) or settle_result.payer
        receipt = SettlementReceipt(
            success=True,
            transaction=settle_result.transaction or "",
            network=self.config.network,
            payer=payer,
        )
        headers = {PAYMENT_RESPONSE_HEADER: encode_receipt(receipt)}

        try:
            artifact = self.handler.deliver()
        except Exception as e:
            logger.error(f"x402: [{ctx.request_id}] Artifact generation failed after settlement: {e}", exc_info=True)
            self._record_undeliverable(ctx, settle_result.transaction, payer, "artifact_failed")
            fault = InternalFault("Artifact generation failed")
            ctx.advance(GateState.FAULTED)
            return GateOutcome(
                state=GateState.FAULTED,
                status_code=500,
                body={"error": "Internal server error", "details": str(fault)},
                headers=headers,
                receipt=receipt,
                error=fault,
            )

        ctx.advance(GateState.FULFILLED)
        if is_disconnected is not None:
            try:
                disconnected = await is_disconnected()
            except asyncio.CancelledError:
                self._record_undeliverable(ctx, settle_result.transaction, payer, "request_cancelled")
                raise
            if disconnected:
                self._record_undeliverable(ctx, settle_result.transaction, payer, "client_disconnected")

        logger.info(f"x402: [{ctx.request_id}] 200 OK - artifact delivered, transaction {settle_result.transaction}")
        return GateOutcome(
            state=GateState.FULFILLED,
            status_code=200,
            body={**artifact, "transaction": settle_result.transaction},
            headers=headers,
            receipt=receipt,
        )
