# app/x402/requirements.py
"""
Payment requirements for the protected resource.

The requirements are derived from the gateway configuration only; nothing
a client sends ever feeds into them.
"""
import logging

from app.core.config import GatewayConfig
from app.x402.types import PaymentRequired, PaymentRequirements, ResourceInfo

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED_ERROR = "PAYMENT-SIGNATURE header is required"


class RequirementsBuilder:
    """Builds the canonical requirements for a resource from a GatewayConfig."""

    def __init__(self, config: GatewayConfig):
        self.config = config

    def build(self, resource_url: str) -> PaymentRequirements:
        """
        Create the PaymentRequirements for a resource.

        Args:
            resource_url: Full URL of the requested resource

        Returns:
            PaymentRequirements for the "exact" scheme
        """
        config = self.config
        extra = {"sponsored": config.sponsored}
        return PaymentRequirements(
            scheme="exact",
            network=config.network,
            amount=str(config.amount),
            asset=config.asset,
            pay_to=config.pay_to,
            max_timeout_seconds=config.max_timeout_seconds,
            extra=extra,
        )

    def build_resource(self, resource_url: str) -> ResourceInfo:
        return ResourceInfo(
            url=resource_url,
            description=self.config.description,
            mime_type=self.config.mime_type,
        )

    def build_payment_required(
        self,
        resource_url: str,
        error_message: str = PAYMENT_REQUIRED_ERROR
    ) -> PaymentRequired:
        """Create the 402 envelope advertising the single accepted requirement."""
        return PaymentRequired(
            error=error_message,
            resource=self.build_resource(resource_url),
            accepts=[self.build(resource_url)],
        )
