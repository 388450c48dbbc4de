"""
Stripe Service for the CleanOps backend.

Thin adapter over the Stripe SDK for the payment-hold lifecycle:
- Manual-capture PaymentIntents (authorize now, capture later)
- Releasing and capturing authorizations
- Listing a customer's cards when no card is saved locally

Every provider failure is raised as PaymentProviderException so callers can
decide whether it fails their operation or becomes a reported sub-result.
"""

from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, List, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import PaymentProviderException
from .base import BaseService

logger: logging.Logger = logging.getLogger(__name__)


def amount_to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _provider_error(action: str, error: stripe.StripeError) -> PaymentProviderException:
    message = getattr(error, "user_message", None) or str(error)
    return PaymentProviderException(
        f"Failed to {action}: {message}",
        provider_code=getattr(error, "code", None),
    )


class StripeService:
    """Service for Stripe API interactions used by payment holds."""

    def __init__(self, api_key: Optional[str] = None, *, currency: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.currency = currency or settings.stripe_currency

        key = api_key or settings.stripe_secret_key.get_secret_value()
        self.stripe_configured = bool(key)
        if self.stripe_configured:
            stripe.api_key = key
            stripe.max_network_retries = settings.stripe_max_network_retries
            self.logger.info("Stripe service configured successfully")
        else:
            self.logger.warning("Stripe secret key not configured - provider calls will fail")

    def _check_stripe_configured(self) -> None:
        """Check if Stripe is properly configured before making API calls."""
        if not self.stripe_configured:
            raise PaymentProviderException(
                "Stripe service not configured. Please check STRIPE_SECRET_KEY environment variable.",
                provider_code="not_configured",
            )

    @BaseService.measure_operation("stripe_create_manual_authorization")
    def create_manual_authorization(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        description: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> Any:
        """
        Create and confirm a manual-capture PaymentIntent off-session.

        Returns the Stripe PaymentIntent; its status is mirrored verbatim by callers.
        """
        self._check_stripe_configured()
        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                capture_method="manual",
                confirm=True,
                off_session=True,
                description=description,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
            self.logger.info(
                f"Created manual authorization {payment_intent.id} "
                f"({payment_intent.status}) for {amount_cents} {self.currency}"
            )
            return payment_intent
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating manual authorization: {str(e)}")
            raise _provider_error("authorize payment", e)

    @BaseService.measure_operation("stripe_cancel_payment_intent")
    def cancel_payment_intent(
        self, payment_intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> Any:
        """Cancel a PaymentIntent to release its authorization."""
        self._check_stripe_configured()
        try:
            return stripe.PaymentIntent.cancel(payment_intent_id, idempotency_key=idempotency_key)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error canceling payment intent {payment_intent_id}: {str(e)}")
            raise _provider_error("cancel payment hold", e)

    @BaseService.measure_operation("stripe_capture_payment_intent")
    def capture_payment_intent(
        self, payment_intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> Any:
        """Capture a manual-capture PaymentIntent."""
        self._check_stripe_configured()
        try:
            return stripe.PaymentIntent.capture(payment_intent_id, idempotency_key=idempotency_key)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error capturing payment intent {payment_intent_id}: {str(e)}")
            raise _provider_error("capture payment hold", e)

    @BaseService.measure_operation("stripe_list_payment_methods")
    def list_customer_payment_methods(self, customer_id: str, *, limit: int = 100) -> List[Any]:
        """Cards attached to a Stripe customer, oldest first."""
        self._check_stripe_configured()
        try:
            result = stripe.Customer.list_payment_methods(customer_id, type="card", limit=limit)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error listing payment methods for {customer_id}: {str(e)}")
            raise _provider_error("list payment methods", e)
        return sorted(result.data, key=lambda method: method.created)
