# app/main.py
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from app.core.config import ConfigurationError, GatewayConfig, Settings, settings
from app.api.endpoints import fortune
from app.api.models.fortune import HealthResponse
from app.services.facilitator import FacilitatorClient
from app.services.fortunes import FortuneHandler
from app.x402.gate import PaymentGate
import logging

# Configure basic logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def log_startup_banner(config: GatewayConfig, port: int) -> None:
    pay_to = config.pay_to
    masked = f"{pay_to[:10]}...{pay_to[-8:]}" if len(pay_to) > 18 else pay_to
    logger.info("x402 payment-gated server")
    logger.info("  Endpoint:    POST /fortune")
    logger.info(f"  Price:       {config.amount} atomic units of {config.asset[:10]}...")
    logger.info(f"  Network:     {config.network}")
    logger.info(f"  Pay To:      {masked}")
    logger.info(f"  Facilitator: {config.facilitator_url}")
    logger.info(f"  Port:        {port}")


def create_app(
    app_settings: Optional[Settings] = None,
    gate: Optional[PaymentGate] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    The gateway configuration is validated here, before any route exists,
    so a missing recipient address stops the process instead of failing
    per request.

    Raises:
        ConfigurationError: If the payment configuration is incomplete
    """
    app_settings = app_settings or settings
    config = gate.config if gate is not None else GatewayConfig.from_settings(app_settings)

    if gate is None:
        gate = PaymentGate(
            config=config,
            facilitator=FacilitatorClient.from_config(config),
            handler=FortuneHandler(),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        gate.facilitator.close()

    app = FastAPI(title=app_settings.PROJECT_NAME, lifespan=lifespan)
    app.state.payment_gate = gate
    app.state.gateway_config = config

    app.include_router(fortune.router, tags=["fortune"])

    @app.get("/health", response_model=HealthResponse, summary="Health Check", tags=["default"])
    def health() -> HealthResponse:
        """ Liveness probe. Reports the configured facilitator. """
        return HealthResponse(status="ok", facilitator=config.facilitator_url)

    log_startup_banner(config, app_settings.PORT)
    return app


def run() -> None:
    """Console entry point: validate configuration, then serve with uvicorn."""
    import uvicorn

    try:
        application = create_app()
    except ConfigurationError as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)

    uvicorn.run(application, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
