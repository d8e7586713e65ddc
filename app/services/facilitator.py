# app/services/facilitator.py
import json
import logging
from typing import Any, Dict, Optional, Type, TypeVar

import requests
from pydantic import BaseModel
from requests.exceptions import RequestException, Timeout

from app.core.config import GatewayConfig
from app.x402.exceptions import FacilitatorUnreachable
from app.x402.types import (
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
    to_wire,
)

logger = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class FacilitatorClient:
    """
    Client for the external x402 facilitator.

    The facilitator is the only authority on chain state: `verify` asks
    whether a payment would satisfy the requirements, `settle` submits it.
    A negative answer comes back as a normal response object; any transport
    problem or unreadable answer raises FacilitatorUnreachable.

    Request bodies are the SDK wire models; replies are read into the
    relaxed VerifyResponse/SettleResponse from app.x402.types, whatever
    the HTTP status.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "FacilitatorClient":
        return cls(base_url=config.facilitator_url, timeout=config.call_timeout_seconds)

    def close(self) -> None:
        self.session.close()

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements
    ) -> VerifyResponse:
        """
        Ask the facilitator whether the payment would satisfy the requirements.

        No transaction is submitted.

        Raises:
            FacilitatorUnreachable: On transport failure, timeout or malformed response
        """
        return self._post("verify", payload, requirements, VerifyResponse)

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements
    ) -> SettleResponse:
        """
        Submit the payment on-chain through the facilitator.

        Raises:
            FacilitatorUnreachable: On transport failure, timeout or malformed response
        """
        return self._post("settle", payload, requirements, SettleResponse)

    def _post(
        self,
        operation: str,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
        response_model: Type[ResponseModel]
    ) -> ResponseModel:
        api_url = f"{self.base_url}/{operation}"
        request_body: Dict[str, Any] = {
            "paymentPayload": to_wire(payload),
            "paymentRequirements": to_wire(requirements),
        }
        logger.debug(f"x402: {operation.upper()} request -> {api_url}\n{json.dumps(request_body, indent=2)}")

        try:
            response = self.session.post(api_url, json=request_body, timeout=self.timeout)
        except Timeout as e:
            logger.error(f"x402: Facilitator {operation} timed out after {self.timeout}s ({api_url})")
            raise FacilitatorUnreachable(operation, f"timed out after {self.timeout}s") from e
        except RequestException as e:
            logger.error(f"x402: Error calling facilitator {operation} ({api_url}): {e}")
            raise FacilitatorUnreachable(operation, str(e)) from e

        # Facilitators answer negative results with 4xx and a normal body,
        # so the status alone does not decide the outcome.
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"x402: Facilitator {operation} returned non-JSON body (HTTP {response.status_code})")
            raise FacilitatorUnreachable(
                operation, f"non-JSON response (HTTP {response.status_code})"
            ) from e

        logger.debug(f"x402: {operation.upper()} response <- {api_url}\n{json.dumps(data, indent=2)}")

        try:
            return response_model.model_validate(data)
        except ValueError as e:
            logger.error(f"x402: Unexpected facilitator {operation} response (HTTP {response.status_code}): {e}")
            raise FacilitatorUnreachable(
                operation, f"unexpected response (HTTP {response.status_code})"
            ) from e
