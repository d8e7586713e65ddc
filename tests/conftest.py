# tests/conftest.py
"""
Shared fixtures for the x402 gateway tests.

The recipient address must exist before app.core.config is imported,
and the audit log is pointed at a temporary directory for every test.
"""
import os

os.environ.setdefault("X402_PAY_TO_ADDRESS", "0xb0b0000000000000000000000000000000000000000000000000000000000001")

import pytest
from unittest.mock import patch

from app.core.config import GatewayConfig

PAY_TO = "0xb0b0000000000000000000000000000000000000000000000000000000000001"


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path):
    """Write audit events to a per-test file."""
    log_path = tmp_path / "audit.jsonl"
    with patch("app.x402.audit.settings") as mock_settings:
        mock_settings.X402_AUDIT_LOG_PATH = str(log_path)
        yield log_path


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(pay_to=PAY_TO, facilitator_url="https://facilitator.test")
