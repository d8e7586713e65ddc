# app/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import AliasChoices, BaseModel, Field, field_validator
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

DEFAULT_FACILITATOR_URL = "https://x402-navy.vercel.app/facilitator"

# USDC on Aptos testnet
APTOS_TESTNET_USDC = "0x69091fbab5f7d635ee7ac5098cf0c1efbe31d68fec0f2cd565e8d168daf52832"


class ConfigurationError(ValueError):
    """Raised when the process configuration cannot serve traffic."""


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Fortune API"
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    X402_PAY_TO_ADDRESS: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("X402_PAY_TO_ADDRESS", "PAYMENT_RECIPIENT_ADDRESS"),
    )
    X402_FACILITATOR_URL: str = Field(
        default=DEFAULT_FACILITATOR_URL,
        validation_alias=AliasChoices("X402_FACILITATOR_URL", "FACILITATOR_URL"),
    )
    X402_NETWORK: str = "aptos:2"  # testnet
    X402_ASSET: str = APTOS_TESTNET_USDC
    X402_PRICE_ATOMIC: int = 10000  # 0.01 USDC (6 decimals)
    X402_MAX_TIMEOUT_SECONDS: int = 60
    X402_SPONSORED: bool = True
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 30.0
    X402_SKIP_VERIFY: bool = False
    X402_LOCAL_PRECHECK: bool = False
    X402_RESOURCE_DESCRIPTION: str = "Fortune Cookie API - Pay 0.01 USDC for wisdom"
    X402_AUDIT_LOG_PATH: Optional[str] = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env
        populate_by_name = True


class GatewayConfig(BaseModel):
    """
    Immutable payment gateway configuration.

    Built once at startup from Settings and handed to the requirements
    builder, the facilitator client and the payment gate. Construction
    fails if the gateway could not produce valid payment requirements.
    """
    pay_to: str
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    network: str = "aptos:2"
    asset: str = APTOS_TESTNET_USDC
    amount: int = 10000
    max_timeout_seconds: int = 60
    sponsored: bool = True
    facilitator_timeout_seconds: float = 30.0
    skip_verify: bool = False
    local_precheck: bool = False
    description: str = "Fortune Cookie API - Pay 0.01 USDC for wisdom"
    mime_type: str = "application/json"

    model_config = {"frozen": True}

    @field_validator("pay_to", "network", "asset", "facilitator_url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty identifier")
        return value

    @field_validator("amount")
    @classmethod
    def _positive_amount(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("price must be a positive number of atomic units")
        return value

    @field_validator("max_timeout_seconds", "facilitator_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value):
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @property
    def call_timeout_seconds(self) -> float:
        """Bound applied to each facilitator call."""
        return float(min(self.facilitator_timeout_seconds, self.max_timeout_seconds))

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        """
        Build the gateway configuration from process settings.

        Raises:
            ConfigurationError: If the recipient address is unset or any
                value would produce invalid payment requirements.
        """
        if not settings.X402_PAY_TO_ADDRESS or not settings.X402_PAY_TO_ADDRESS.strip():
            raise ConfigurationError(
                "PAYMENT_RECIPIENT_ADDRESS (or X402_PAY_TO_ADDRESS) environment variable is required"
            )
        try:
            return cls(
                pay_to=settings.X402_PAY_TO_ADDRESS,
                facilitator_url=settings.X402_FACILITATOR_URL,
                network=settings.X402_NETWORK,
                asset=settings.X402_ASSET,
                amount=settings.X402_PRICE_ATOMIC,
                max_timeout_seconds=settings.X402_MAX_TIMEOUT_SECONDS,
                sponsored=settings.X402_SPONSORED,
                facilitator_timeout_seconds=settings.X402_FACILITATOR_TIMEOUT_SECONDS,
                skip_verify=settings.X402_SKIP_VERIFY,
                local_precheck=settings.X402_LOCAL_PRECHECK,
                description=settings.X402_RESOURCE_DESCRIPTION,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid payment configuration: {e}") from e


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
