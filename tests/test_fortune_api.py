# tests/test_fortune_api.py
"""
Integration tests for the x402-protected fortune endpoint.

These tests run the full stack (FastAPI route, payment gate, codec,
facilitator client) with requests mocked at the Session level, so no
real facilitator or blockchain is needed.
"""
import json
import random
import pytest
import requests
from base64 import b64decode, b64encode
from unittest.mock import MagicMock
from requests.exceptions import ConnectionError

from fastapi.testclient import TestClient

from app.core.config import ConfigurationError, Settings
from app.main import create_app
from app.services.facilitator import FacilitatorClient
from app.services.fortunes import FORTUNES, FortuneHandler
from app.x402.audit import AuditEventType, read_audit_log
from app.x402.gate import PaymentGate

PAYER = "0xpayer000000000000000000000000000000000000000000000000000000000001"


def facilitator_reply(json_data, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    return response


def create_valid_payment_header(amount: str = "10000", pay_to: str = None) -> str:
    """Create a base64-encoded Payment-Signature header like the JS client does."""
    payload = {
        "x402Version": 2,
        "resource": {"url": "http://testserver/fortune", "mimeType": "application/json"},
        "accepted": {
            "scheme": "exact",
            "network": "aptos:2",
            "amount": amount,
            "asset": "0x69091fbab5f7d635ee7ac5098cf0c1efbe31d68fec0f2cd565e8d168daf52832",
            "payTo": pay_to or "0xb0b0",
            "maxTimeoutSeconds": 60,
            "extra": {"sponsored": True},
        },
        "payload": {"transaction": b64encode(b'{"transaction":[1,2,3]}').decode()},
    }
    return b64encode(json.dumps(payload).encode()).decode()


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(gateway_config, session):
    gate = PaymentGate(
        config=gateway_config,
        facilitator=FacilitatorClient(gateway_config.facilitator_url, session=session),
        handler=FortuneHandler(rng=random.Random(3)),
    )
    return TestClient(create_app(gate=gate))


def posted_paths(session) -> list:
    return [call[0][0].rsplit("/", 1)[-1] for call in session.post.call_args_list]


class TestPaymentRequired:
    """Requests without payment."""

    def test_no_header_returns_402(self, client, session, gateway_config):
        response = client.post("/fortune")

        assert response.status_code == 402
        assert response.json() == {"error": "Payment required", "x402Version": 2}

        challenge = json.loads(b64decode(response.headers["payment-required"]))
        assert challenge["x402Version"] == 2
        assert challenge["resource"]["url"] == "http://testserver/fortune"
        assert challenge["accepts"] == [{
            "scheme": "exact",
            "network": "aptos:2",
            "amount": "10000",
            "asset": "0x69091fbab5f7d635ee7ac5098cf0c1efbe31d68fec0f2cd565e8d168daf52832",
            "payTo": gateway_config.pay_to,
            "maxTimeoutSeconds": 60,
            "extra": {"sponsored": True},
        }]
        session.post.assert_not_called()

    def test_get_is_not_allowed(self, client):
        assert client.get("/fortune").status_code == 405


class TestPaidRequest:
    """Requests carrying a Payment-Signature header."""

    def test_successful_payment(self, client, session):
        session.post.side_effect = [
            facilitator_reply({"isValid": True, "payer": PAYER}),
            facilitator_reply({"success": True, "transaction": "0xabc", "network": "aptos:2"}),
        ]

        response = client.post("/fortune", headers={"Payment-Signature": create_valid_payment_header()})

        assert response.status_code == 200
        body = response.json()
        assert body["transaction"] == "0xabc"
        assert body["fortune"] in FORTUNES

        receipt = json.loads(b64decode(response.headers["payment-response"]))
        assert (receipt["success"], receipt["transaction"], receipt["network"], receipt["payer"]) == (
            True, "0xabc", "aptos:2", PAYER
        )
        assert posted_paths(session) == ["verify", "settle"]

    def test_verification_failure(self, client, session):
        session.post.return_value = facilitator_reply(
            {"isValid": False, "invalidReason": "insufficient funds"}
        )

        response = client.post("/fortune", headers={"Payment-Signature": create_valid_payment_header()})

        assert response.status_code == 402
        assert response.json() == {"error": "Payment verification failed", "reason": "insufficient funds"}
        assert "payment-response" not in response.headers
        assert posted_paths(session) == ["verify"]

    def test_settlement_failure(self, client, session):
        session.post.side_effect = [
            facilitator_reply({"isValid": True, "payer": PAYER}),
            facilitator_reply({"success": False, "errorReason": "transaction_failed"}),
        ]

        response = client.post("/fortune", headers={"Payment-Signature": create_valid_payment_header()})

        assert response.status_code == 402
        assert response.json() == {"error": "Payment settlement failed", "reason": "transaction_failed"}

    def test_facilitator_unreachable(self, client, session):
        session.post.side_effect = ConnectionError("Connection refused")

        response = client.post("/fortune", headers={"Payment-Signature": create_valid_payment_header()})

        assert response.status_code == 502
        assert response.json()["error"] == "Facilitator unavailable"
        assert posted_paths(session) == ["verify"]

    def test_malformed_header(self, client, session):
        response = client.post("/fortune", headers={"Payment-Signature": "%%%not-base64%%%"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid payment payload"
        session.post.assert_not_called()

    def test_server_requirements_sent_to_facilitator(self, client, session, gateway_config):
        session.post.return_value = facilitator_reply({"isValid": False, "invalidReason": "amount_mismatch"})

        client.post(
            "/fortune",
            headers={"Payment-Signature": create_valid_payment_header(amount="1", pay_to="0xattacker")},
        )

        sent = session.post.call_args[1]["json"]
        assert sent["paymentRequirements"]["amount"] == "10000"
        assert sent["paymentRequirements"]["payTo"] == gateway_config.pay_to
        assert sent["paymentPayload"]["accepted"]["amount"] == "1"

    def test_paid_request_is_audited(self, client, session):
        session.post.side_effect = [
            facilitator_reply({"isValid": True, "payer": PAYER}),
            facilitator_reply({"success": True, "transaction": "0xabc"}),
        ]

        client.post(
            "/fortune",
            headers={"Payment-Signature": create_valid_payment_header(), "X-Forwarded-For": "198.51.100.4, 10.0.0.1"},
        )

        received = read_audit_log(event_type=AuditEventType.PAYMENT_RECEIVED)
        assert received[0]["client_ip"] == "198.51.100.4"
        assert received[0]["data"]["claimed_amount"] == "10000"


class TestHealth:
    """Liveness probe."""

    def test_health_reports_facilitator(self, client, gateway_config):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "facilitator": gateway_config.facilitator_url}


class TestStartup:
    """Startup configuration validation."""

    def test_missing_recipient_prevents_startup(self):
        with pytest.raises(ConfigurationError):
            create_app(app_settings=Settings(_env_file=None, X402_PAY_TO_ADDRESS=None))

    def test_app_built_from_settings(self):
        app = create_app(app_settings=Settings(_env_file=None, X402_PAY_TO_ADDRESS="0xrecipient"))

        assert app.state.gateway_config.pay_to == "0xrecipient"
        assert isinstance(app.state.payment_gate.facilitator, FacilitatorClient)

    def test_openapi_documents_fortune_endpoint(self, client):
        schema = client.get("/openapi.json").json()
        assert "/fortune" in schema["paths"]
        assert "402" in schema["paths"]["/fortune"]["post"]["responses"]
