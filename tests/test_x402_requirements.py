# tests/test_x402_requirements.py
"""
Unit tests for gateway configuration and payment requirements.
"""
import pytest
from pydantic import ValidationError

from app.core.config import (
    APTOS_TESTNET_USDC,
    DEFAULT_FACILITATOR_URL,
    ConfigurationError,
    GatewayConfig,
    Settings,
)
from app.x402.requirements import PAYMENT_REQUIRED_ERROR, RequirementsBuilder
from app.x402.types import to_wire


class TestSettings:
    """Test environment-backed settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("X402_FACILITATOR_URL", raising=False)
        monkeypatch.delenv("FACILITATOR_URL", raising=False)
        monkeypatch.delenv("PORT", raising=False)
        s = Settings(_env_file=None)

        assert s.PORT == 3000
        assert s.X402_FACILITATOR_URL == DEFAULT_FACILITATOR_URL
        assert s.X402_NETWORK == "aptos:2"
        assert s.X402_ASSET == APTOS_TESTNET_USDC
        assert s.X402_PRICE_ATOMIC == 10000

    def test_recipient_from_legacy_variable(self, monkeypatch):
        monkeypatch.delenv("X402_PAY_TO_ADDRESS", raising=False)
        monkeypatch.setenv("PAYMENT_RECIPIENT_ADDRESS", "0xlegacy")
        monkeypatch.setenv("FACILITATOR_URL", "https://other.example/facilitator")

        s = Settings(_env_file=None)

        assert s.X402_PAY_TO_ADDRESS == "0xlegacy"
        assert s.X402_FACILITATOR_URL == "https://other.example/facilitator"


class TestGatewayConfig:
    """Test startup validation of the payment configuration."""

    def test_from_settings(self):
        config = GatewayConfig.from_settings(
            Settings(_env_file=None, X402_PAY_TO_ADDRESS="  0xabc  ", X402_PRICE_ATOMIC=500)
        )
        assert config.pay_to == "0xabc"
        assert config.amount == 500

    @pytest.mark.parametrize("pay_to", [None, "", "   "])
    def test_missing_recipient_is_fatal(self, pay_to):
        with pytest.raises(ConfigurationError, match="PAYMENT_RECIPIENT_ADDRESS"):
            GatewayConfig.from_settings(Settings(_env_file=None, X402_PAY_TO_ADDRESS=pay_to))

    @pytest.mark.parametrize("price", [0, -1])
    def test_non_positive_price_is_fatal(self, price):
        with pytest.raises(ConfigurationError, match="Invalid payment configuration"):
            GatewayConfig.from_settings(
                Settings(_env_file=None, X402_PAY_TO_ADDRESS="0xabc", X402_PRICE_ATOMIC=price)
            )

    @pytest.mark.parametrize("field", ["X402_NETWORK", "X402_ASSET"])
    def test_blank_identifiers_are_fatal(self, field):
        with pytest.raises(ConfigurationError):
            GatewayConfig.from_settings(
                Settings(_env_file=None, X402_PAY_TO_ADDRESS="0xabc", **{field: " "})
            )

    def test_config_is_immutable(self, gateway_config):
        with pytest.raises(ValidationError):
            gateway_config.amount = 1

    def test_call_timeout_bounded_by_max_timeout(self):
        config = GatewayConfig(pay_to="0xabc", max_timeout_seconds=10, facilitator_timeout_seconds=30)
        assert config.call_timeout_seconds == 10.0


class TestRequirementsBuilder:
    """Test canonical requirements construction."""

    def test_build(self, gateway_config):
        requirements = RequirementsBuilder(gateway_config).build("http://localhost:3000/fortune")

        assert to_wire(requirements) == {
            "scheme": "exact",
            "network": "aptos:2",
            "amount": "10000",
            "asset": APTOS_TESTNET_USDC,
            "payTo": gateway_config.pay_to,
            "maxTimeoutSeconds": 60,
            "extra": {"sponsored": True},
        }

    def test_build_is_deterministic(self, gateway_config):
        builder = RequirementsBuilder(gateway_config)
        assert builder.build("http://a/fortune") == builder.build("http://b/fortune")

    def test_sponsorship_flag(self, gateway_config):
        config = gateway_config.model_copy(update={"sponsored": False})
        assert RequirementsBuilder(config).build("http://a/fortune").extra == {"sponsored": False}

    def test_build_payment_required(self, gateway_config):
        payment_required = RequirementsBuilder(gateway_config).build_payment_required("http://a/fortune")

        assert payment_required.x402_version == 2
        assert payment_required.error == PAYMENT_REQUIRED_ERROR
        assert payment_required.resource.url == "http://a/fortune"
        assert payment_required.resource.mime_type == "application/json"
        assert len(payment_required.accepts) == 1
        assert payment_required.accepts[0].amount == "10000"
