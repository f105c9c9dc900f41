# app/tests/test_stripe_callbacks.py
"""
Tests for the Stripe callback endpoints.

- Payment-failure webhook: real signature verification, mocked side effects
- Checkout completion: mocked Stripe client, real SQLite users/teams
"""
import hashlib
import hmac
import json
import logging
import time
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig, BillingConfig
from app.main import create_app
from billing.service import BillingGateway

ENDPOINT_SECRET = "whsec_test_endpoint"
WEBHOOK_PATH = "/api/v1/public/stripe-invoice-payment-failed"


def _sign(payload: bytes, secret: str = ENDPOINT_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def stripe_client():
    client = MagicMock()
    client.checkout.sessions.retrieve_async = AsyncMock()
    client.customers.update_async = AsyncMock(return_value={"id": "cus_123"})
    client.subscriptions.update_async = AsyncMock(return_value={"id": "sub_123"})
    client.invoices.list_async = AsyncMock(return_value={
        "object": "list",
        "data": [{"id": "in_1"}],
    })
    return client


@pytest.fixture
def billing_config():
    return BillingConfig(
        stripe_secret_key="sk_test_0123456789abcdef",
        stripe_endpoint_secret=ENDPOINT_SECRET,
        stripe_plan_id="plan_team",
        url_app="http://app.test",
        url_api="http://api.test",
    )


@pytest.fixture
def client(stripe_client, billing_config):
    application = create_app(
        config=AppConfig(environment="test", billing=billing_config),
        gateway=BillingGateway(stripe_client, billing_config),
    )
    return TestClient(application)


# =============================================================================
# Payment-failure Webhook
# =============================================================================


class TestPaymentFailedWebhook:

    PAYLOAD = json.dumps({
        "id": "evt_123",
        "object": "event",
        "type": "invoice.payment_failed",
        "data": {"object": {"id": "in_123", "subscription": "sub_123"}},
    }).encode("utf-8")

    def _webhook_logs(self, caplog):
        return [r for r in caplog.records if r.name == "billing.webhooks"]

    def test_verified_event_returns_200_and_logs_once(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="billing.webhooks"):
            response = client.post(
                WEBHOOK_PATH,
                content=self.PAYLOAD,
                headers={"stripe-signature": _sign(self.PAYLOAD)},
            )

        assert response.status_code == 200
        assert len(self._webhook_logs(caplog)) == 1

    @pytest.mark.parametrize("event", [
        {"id": "evt_1", "object": "event", "type": "customer.created", "data": {"object": {}}},
        {"id": "evt_2", "object": "event"},
    ])
    def test_any_verified_event_is_acknowledged(self, client, caplog, event):
        payload = json.dumps(event).encode("utf-8")

        with caplog.at_level(logging.INFO, logger="billing.webhooks"):
            response = client.post(
                WEBHOOK_PATH,
                content=payload,
                headers={"stripe-signature": _sign(payload)},
            )

        assert response.status_code == 200
        assert len(self._webhook_logs(caplog)) == 1

    @pytest.mark.parametrize("payload", [b"[]", b"null", b'"x"', b"42"])
    def test_verified_non_object_body_acknowledged(self, client, caplog, payload):
        with caplog.at_level(logging.INFO, logger="billing.webhooks"):
            response = client.post(
                WEBHOOK_PATH,
                content=payload,
                headers={"stripe-signature": _sign(payload)},
            )

        assert response.status_code == 200
        records = self._webhook_logs(caplog)
        assert len(records) == 1
        assert payload.decode("utf-8") in records[0].getMessage()

    def test_log_line_names_event_and_subscription(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="billing.webhooks"):
            client.post(
                WEBHOOK_PATH,
                content=self.PAYLOAD,
                headers={"stripe-signature": _sign(self.PAYLOAD)},
            )

        message = self._webhook_logs(caplog)[0].getMessage()
        assert "evt_123" in message
        assert "sub_123" in message

    def test_tampered_body_rejected(self, client, caplog):
        signature = _sign(self.PAYLOAD)
        tampered = self.PAYLOAD.replace(b"sub_123", b"sub_666")

        with caplog.at_level(logging.INFO, logger="billing.webhooks"):
            response = client.post(
                WEBHOOK_PATH,
                content=tampered,
                headers={"stripe-signature": signature},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature"}
        assert self._webhook_logs(caplog) == []

    def test_missing_signature_rejected(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="billing.webhooks"):
            response = client.post(WEBHOOK_PATH, content=self.PAYLOAD)

        assert response.status_code == 400
        assert self._webhook_logs(caplog) == []

    def test_invalid_signature_rejected(self, client):
        response = client.post(
            WEBHOOK_PATH,
            content=self.PAYLOAD,
            headers={"stripe-signature": "t=1,v1=deadbeef"},
        )

        assert response.status_code == 400

    def test_reparsed_body_rejected(self, client):
        """A re-serialized body no longer matches the signature."""
        signature = _sign(self.PAYLOAD)
        reserialized = json.dumps(json.loads(self.PAYLOAD), indent=2).encode("utf-8")

        response = client.post(
            WEBHOOK_PATH,
            content=reserialized,
            headers={"stripe-signature": signature},
        )

        assert response.status_code == 400


# =============================================================================
# Checkout Completion
# =============================================================================


class TestCheckoutCompleted:

    @pytest.fixture
    def leader(self, fresh_database):
        from accounts.service import create_user
        return create_user("lead@example.com", "Lead")

    @pytest.fixture
    def member(self, fresh_database):
        from accounts.service import create_user
        return create_user("member@example.com", "Member")

    @pytest.fixture
    def team(self, leader):
        from accounts.service import create_team
        return create_team("Team One", "team-one", leader.id)

    def _session(self, user_id, team_id, mode="subscription"):
        return {
            "id": "abc123",
            "mode": mode,
            "metadata": {"userId": user_id, "teamId": team_id},
            "setup_intent": None,
            "customer": {"id": "cus_123", "email": "lead@example.com"},
            "subscription": {
                "id": "sub_123",
                "status": "active",
                "default_payment_method": {
                    "id": "pm_1",
                    "card": {"brand": "visa", "last4": "4242", "exp_month": 1, "exp_year": 2030},
                },
            },
        }

    def _error_of(self, response):
        location = urlsplit(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == (
            "http://app.test/your-settings"
        )
        return parse_qs(location.query)["error"][0]

    def test_subscription_redirects_to_billing(self, client, stripe_client, leader, team):
        from accounts.service import get_team_by_id, get_user_by_id

        stripe_client.checkout.sessions.retrieve_async.return_value = self._session(
            leader.id, team.id
        )

        response = client.get("/stripe/checkout-completed/abc123", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "http://app.test/team/team-one/billing"
        assert stripe_client.checkout.sessions.retrieve_async.call_args.args == ("abc123",)
        assert get_team_by_id(team.id).is_subscription_active is True
        assert get_user_by_id(leader.id).stripe_customer_id == "cus_123"

    def test_permission_denied_redirects_to_settings(
        self, client, stripe_client, member, team
    ):
        from accounts.service import get_team_by_id

        stripe_client.checkout.sessions.retrieve_async.return_value = self._session(
            member.id, team.id
        )

        response = client.get("/stripe/checkout-completed/abc123", follow_redirects=False)

        assert response.status_code == 302
        assert self._error_of(response) == "Permission denied"
        assert get_team_by_id(team.id).is_subscription_active is False
        stripe_client.invoices.list_async.assert_not_called()

    def test_wrong_mode_redirects_to_settings(self, client, stripe_client, leader, team):
        stripe_client.checkout.sessions.retrieve_async.return_value = self._session(
            leader.id, team.id, mode="payment"
        )

        response = client.get("/stripe/checkout-completed/abc123", follow_redirects=False)

        assert response.status_code == 302
        assert self._error_of(response) == "Wrong session."

    def test_stripe_error_redirects_to_settings(self, client, stripe_client, fresh_database):
        import stripe

        stripe_client.checkout.sessions.retrieve_async.side_effect = stripe.InvalidRequestError(
            "No such checkout.session: abc123", param="session"
        )

        response = client.get("/stripe/checkout-completed/abc123", follow_redirects=False)

        assert response.status_code == 302
        assert "No such checkout.session" in self._error_of(response)

    def test_persistence_error_redirects_to_settings(self, client, stripe_client, leader, team):
        stripe_client.checkout.sessions.retrieve_async.return_value = self._session(
            leader.id, team.id
        )

        with patch("billing.checkout.accounts.subscribe_team", side_effect=RuntimeError("db down")):
            response = client.get("/stripe/checkout-completed/abc123", follow_redirects=False)

        assert response.status_code == 302
        assert self._error_of(response) == "db down"
