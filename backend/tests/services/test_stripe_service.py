# backend/tests/services/test_stripe_service.py
"""
Tests for the Stripe adapter.

The Stripe SDK is patched at its module attributes; no network calls are made.
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

from pydantic import SecretStr
import pytest
import stripe

from app.core.config import settings
from app.core.exceptions import PaymentProviderException
from app.services.stripe_service import StripeService, amount_to_cents


@pytest.fixture
def stripe_service():
    return StripeService(api_key="sk_test_cleanops", currency="usd")


class TestAmountToCents:
    def test_whole_amount(self):
        assert amount_to_cents(Decimal("120")) == 12000

    def test_rounds_half_up(self):
        assert amount_to_cents(Decimal("10.005")) == 1001


class TestStripeServiceConfiguration:
    def test_unconfigured_service_refuses_calls(self):
        with patch.object(settings, "stripe_secret_key", SecretStr("")):
            service = StripeService()

        assert service.stripe_configured is False
        with pytest.raises(PaymentProviderException) as exc_info:
            service.cancel_payment_intent("pi_123")
        assert exc_info.value.provider_code == "not_configured"


class TestManualAuthorization:
    @patch("stripe.PaymentIntent.create")
    def test_creates_manual_capture_intent(self, mock_create, stripe_service):
        mock_intent = MagicMock()
        mock_intent.id = "pi_hold"
        mock_intent.status = "requires_capture"
        mock_create.return_value = mock_intent

        result = stripe_service.create_manual_authorization(
            customer_id="cus_123",
            payment_method_id="pm_123",
            amount_cents=12000,
            description="Automatic payment hold for booking b1",
            metadata={"booking_id": "b1", "client_id": "c1", "type": "auto_hold"},
            idempotency_key="booking-hold:b1:1",
        )

        assert result is mock_intent
        mock_create.assert_called_once_with(
            amount=12000,
            currency="usd",
            customer="cus_123",
            payment_method="pm_123",
            capture_method="manual",
            confirm=True,
            off_session=True,
            description="Automatic payment hold for booking b1",
            metadata={"booking_id": "b1", "client_id": "c1", "type": "auto_hold"},
            idempotency_key="booking-hold:b1:1",
        )

    @patch("stripe.PaymentIntent.create")
    def test_card_error_becomes_provider_exception(self, mock_create, stripe_service):
        mock_create.side_effect = stripe.CardError(
            "Your card was declined.", param="payment_method", code="card_declined"
        )

        with pytest.raises(PaymentProviderException, match="declined") as exc_info:
            stripe_service.create_manual_authorization(
                customer_id="cus_123",
                payment_method_id="pm_123",
                amount_cents=12000,
                description="hold",
                metadata={},
            )
        assert exc_info.value.provider_code == "card_declined"
        assert exc_info.value.status_code == 502

    @patch("stripe.PaymentIntent.create")
    def test_api_error(self, mock_create, stripe_service):
        mock_create.side_effect = stripe.StripeError("API Error")

        with pytest.raises(PaymentProviderException, match="Failed to authorize payment"):
            stripe_service.create_manual_authorization(
                customer_id="cus_123",
                payment_method_id="pm_123",
                amount_cents=100,
                description="hold",
                metadata={},
            )


class TestReleaseAndCapture:
    @patch("stripe.PaymentIntent.cancel")
    def test_cancel(self, mock_cancel, stripe_service):
        mock_cancel.return_value = MagicMock(status="canceled")

        result = stripe_service.cancel_payment_intent("pi_123")

        assert result.status == "canceled"
        mock_cancel.assert_called_once_with("pi_123", idempotency_key=None)

    @patch("stripe.PaymentIntent.cancel")
    def test_cancel_error(self, mock_cancel, stripe_service):
        mock_cancel.side_effect = stripe.StripeError("No such payment_intent")

        with pytest.raises(PaymentProviderException, match="Failed to cancel payment hold"):
            stripe_service.cancel_payment_intent("pi_missing")

    @patch("stripe.PaymentIntent.capture")
    def test_capture(self, mock_capture, stripe_service):
        mock_capture.return_value = MagicMock(status="succeeded")

        result = stripe_service.capture_payment_intent("pi_123", idempotency_key="capture:pi_123")

        assert result.status == "succeeded"
        mock_capture.assert_called_once_with("pi_123", idempotency_key="capture:pi_123")


class TestListPaymentMethods:
    @patch("stripe.Customer.list_payment_methods")
    def test_sorted_oldest_first(self, mock_list, stripe_service):
        newer = MagicMock(id="pm_new", created=1_700_000_500)
        older = MagicMock(id="pm_old", created=1_600_000_000)
        mock_list.return_value = MagicMock(data=[newer, older])

        methods = stripe_service.list_customer_payment_methods("cus_123")

        assert [m.id for m in methods] == ["pm_old", "pm_new"]
        mock_list.assert_called_once_with("cus_123", type="card", limit=100)

    @patch("stripe.Customer.list_payment_methods")
    def test_list_error(self, mock_list, stripe_service):
        mock_list.side_effect = stripe.StripeError("API Error")

        with pytest.raises(PaymentProviderException, match="Failed to list payment methods"):
            stripe_service.list_customer_payment_methods("cus_123")
