"""
Unit tests for Stripe payment integration.
"""

import json
from datetime import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe
from stripe import PaymentIntent

from config import settings
from conftest import TUESDAY
from models.appointment import Appointment, ClientContact
from payments import (
    cancel_payment_intent,
    create_payment_intent,
    get_payment_intent,
    handle_webhook,
    verify_webhook_event,
)
from utils.exceptions import (
    InvalidTransition,
    PaymentIntentError,
    StoreError,
    ValidationError,
    WebhookVerificationError,
)


def _appointment(price_cents: int = 8500) -> Appointment:
    return Appointment(
        service_id="swedish",
        provider_id="dirlene",
        service_name="Massagem Sueca",
        provider_name="Dirlene",
        price_cents=price_cents,
        duration_minutes=60,
        date=TUESDAY,
        start_time=time(10, 0),
        end_time=time(11, 0),
        contact=ClientContact(name="Ana", email="ana@example.com", phone="+5511999998888"),
    )


@pytest.fixture
def no_retry_delay():
    with patch("payments.stripe._RETRY_DELAY", 0):
        yield


class TestCreatePaymentIntent:
    """Test payment intent creation."""

    @pytest.mark.asyncio
    async def test_create_payment_intent_success(self):
        """Test successful payment intent creation."""
        mock_payment_intent = MagicMock(spec=PaymentIntent)
        mock_payment_intent.id = "pi_test_123"
        mock_payment_intent.client_secret = "pi_test_123_secret"
        appointment = _appointment()

        with patch("payments.stripe.stripe.PaymentIntent.create") as mock_create:
            mock_create.return_value = mock_payment_intent

            result = await create_payment_intent(appointment)

        assert result.id == "pi_test_123"
        mock_create.assert_called_once()
        call_kwargs = mock_create.call_args[1]
        assert call_kwargs["amount"] == 8500
        assert call_kwargs["currency"] == "brl"
        assert call_kwargs["metadata"]["appointment_id"] == appointment.id
        assert call_kwargs["receipt_email"] == "ana@example.com"
        assert call_kwargs["idempotency_key"] == f"appointment-{appointment.id}"

    @pytest.mark.asyncio
    async def test_create_payment_intent_invalid_amount(self):
        """Test payment intent with invalid amount."""
        with pytest.raises(ValueError, match="Invalid amount"):
            await create_payment_intent(_appointment(price_cents=0))

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, no_retry_delay):
        with patch("payments.stripe.stripe.PaymentIntent.create") as mock_create:
            mock_create.side_effect = stripe.InvalidRequestError(
                "Invalid request", param="amount", http_status=400
            )

            with pytest.raises(PaymentIntentError, match="Payment processing error"):
                await create_payment_intent(_appointment())

        assert mock_create.call_count == 1

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, no_retry_delay):
        mock_payment_intent = MagicMock(spec=PaymentIntent)
        mock_payment_intent.id = "pi_test_123"

        with patch("payments.stripe.stripe.PaymentIntent.create") as mock_create:
            mock_create.side_effect = [
                stripe.APIConnectionError("Connection reset"),
                mock_payment_intent,
            ]

            result = await create_payment_intent(_appointment())

        assert result.id == "pi_test_123"
        assert mock_create.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, no_retry_delay):
        with patch("payments.stripe.stripe.PaymentIntent.create") as mock_create:
            mock_create.side_effect = stripe.APIConnectionError("Connection reset")

            with pytest.raises(PaymentIntentError, match="after 3 attempts"):
                await create_payment_intent(_appointment())

        assert mock_create.call_count == 3


class TestGetPaymentIntent:
    """Test payment intent retrieval."""

    @pytest.mark.asyncio
    async def test_get_payment_intent_success(self):
        mock_payment_intent = MagicMock(spec=PaymentIntent)
        mock_payment_intent.id = "pi_test_123"

        with patch("payments.stripe.stripe.PaymentIntent.retrieve") as mock_retrieve:
            mock_retrieve.return_value = mock_payment_intent

            result = await get_payment_intent("pi_test_123")

        assert result.id == "pi_test_123"
        mock_retrieve.assert_called_once_with("pi_test_123")

    @pytest.mark.asyncio
    async def test_get_payment_intent_not_found(self):
        with patch("payments.stripe.stripe.PaymentIntent.retrieve") as mock_retrieve:
            mock_retrieve.side_effect = stripe.InvalidRequestError(
                "No such payment_intent", param="id", http_status=404
            )

            assert await get_payment_intent("pi_missing") is None

    @pytest.mark.asyncio
    async def test_get_payment_intent_unreachable(self, no_retry_delay):
        with patch("payments.stripe.stripe.PaymentIntent.retrieve") as mock_retrieve:
            mock_retrieve.side_effect = stripe.APIConnectionError("Connection reset")

            with pytest.raises(PaymentIntentError):
                await get_payment_intent("pi_test_123")

    @pytest.mark.asyncio
    async def test_get_payment_intent_requires_id(self):
        with pytest.raises(ValueError):
            await get_payment_intent("")


class TestCancelPaymentIntent:
    @pytest.mark.asyncio
    async def test_cancel_success(self):
        with patch("payments.stripe.stripe.PaymentIntent.cancel") as mock_cancel:
            assert await cancel_payment_intent("pi_test_123") is True
        mock_cancel.assert_called_once_with("pi_test_123")

    @pytest.mark.asyncio
    async def test_cancel_failure_is_reported_not_raised(self):
        with patch("payments.stripe.stripe.PaymentIntent.cancel") as mock_cancel:
            mock_cancel.side_effect = stripe.InvalidRequestError(
                "PaymentIntent has already succeeded", param=None, http_status=400
            )
            assert await cancel_payment_intent("pi_test_123") is False


class TestVerifyWebhookEvent:
    def _payload(self, **event) -> bytes:
        body = {"id": "evt_1", "type": "payment_intent.succeeded"}
        body.update(event)
        return json.dumps(body).encode()

    def test_unverified_outside_production(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", None)

        event = verify_webhook_event(self._payload(), None)

        assert event["id"] == "evt_1"

    def test_missing_secret_in_production(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", None)
        monkeypatch.setattr(settings, "environment", "production")

        with pytest.raises(WebhookVerificationError):
            verify_webhook_event(self._payload(), None)

    def test_missing_signature(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")

        with pytest.raises(WebhookVerificationError, match="Missing"):
            verify_webhook_event(self._payload(), None)

    def test_bad_signature(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")

        with patch("payments.stripe.stripe.Webhook.construct_event") as construct:
            construct.side_effect = stripe.SignatureVerificationError("bad", "t=1,v1=abc")
            with pytest.raises(WebhookVerificationError, match="Invalid signature"):
                verify_webhook_event(self._payload(), "t=1,v1=abc")

    def test_good_signature(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")

        with patch("payments.stripe.stripe.Webhook.construct_event") as construct:
            event = verify_webhook_event(self._payload(), "t=1,v1=abc")

        construct.assert_called_once()
        assert event["type"] == "payment_intent.succeeded"

    def test_event_without_type(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", None)

        with pytest.raises(ValidationError):
            verify_webhook_event(json.dumps({"id": "evt_1"}).encode(), None)

    def test_not_json(self, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", None)

        with pytest.raises(ValidationError):
            verify_webhook_event(b"not json", None)


def _event(event_type: str = "payment_intent.succeeded", intent_id: str = "pi_test_123"):
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": {"appointment_id": "forged"}}},
    }


def _intent(status: str = "succeeded", appointment_id: str = "appt_1") -> dict:
    return {
        "id": "pi_test_123",
        "status": status,
        "metadata": {"appointment_id": appointment_id},
    }


class TestHandleWebhook:
    """Test webhook handling."""

    @pytest.mark.asyncio
    async def test_payment_succeeded_confirms(self):
        service = MagicMock()
        service.confirm_payment = AsyncMock()

        with patch("payments.stripe.get_payment_intent", AsyncMock(return_value=_intent())):
            result = await handle_webhook(_event(), service)

        assert result == {"status": "success", "appointment_id": "appt_1"}
        # Metadata comes from the retrieved intent, never from the event body
        service.confirm_payment.assert_awaited_once_with(
            "appt_1", payment_intent_id="pi_test_123"
        )

    @pytest.mark.asyncio
    async def test_payment_canceled_expires_hold(self):
        service = MagicMock()
        service.expire_hold = AsyncMock()

        with patch(
            "payments.stripe.get_payment_intent", AsyncMock(return_value=_intent("canceled"))
        ):
            result = await handle_webhook(_event("payment_intent.canceled"), service)

        assert result["status"] == "expired"
        service.expire_hold.assert_awaited_once_with("appt_1")

    @pytest.mark.asyncio
    async def test_payment_failed(self):
        service = MagicMock()

        with patch(
            "payments.stripe.get_payment_intent",
            AsyncMock(return_value=_intent("requires_payment_method")),
        ):
            result = await handle_webhook(_event("payment_intent.payment_failed"), service)

        assert result["status"] == "failed"

    @pytest.mark.asyncio
    async def test_unrelated_event_is_ignored(self):
        result = await handle_webhook({"id": "evt_1", "type": "customer.created"}, MagicMock())
        assert result["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_missing_object_id(self):
        event = {"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {}}}
        result = await handle_webhook(event, MagicMock())
        assert result["status"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_intent(self):
        with patch("payments.stripe.get_payment_intent", AsyncMock(return_value=None)):
            result = await handle_webhook(_event(), MagicMock())
        assert result["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_intent_without_appointment(self):
        intent = {"id": "pi_test_123", "status": "succeeded", "metadata": {}}
        with patch("payments.stripe.get_payment_intent", AsyncMock(return_value=intent)):
            result = await handle_webhook(_event(), MagicMock())
        assert result["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_late_payment_is_rejected(self):
        service = MagicMock()
        service.confirm_payment = AsyncMock(side_effect=InvalidTransition("cancelled"))

        with patch("payments.stripe.get_payment_intent", AsyncMock(return_value=_intent())):
            result = await handle_webhook(_event(), service)

        assert result["status"] == "rejected"
        assert result["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        service = MagicMock()
        service.confirm_payment = AsyncMock(side_effect=StoreError("timeout"))

        with patch("payments.stripe.get_payment_intent", AsyncMock(return_value=_intent())):
            with pytest.raises(StoreError):
                await handle_webhook(_event(), service)
