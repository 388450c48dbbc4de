"""
Payment hold service for the CleanOps backend.

A payment hold is a manual-capture Stripe authorization for a booking's price.
Holds are placed inline when a card-paid booking is created inside the
configured lead window, and otherwise by the periodic sweep once the booking
enters it.

Hold outcomes are reported as HoldResult values rather than exceptions: a
booking create, update or cancel never fails because its hold sub-step did.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, List, NamedTuple, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.exceptions import (
    BookingNotFoundException,
    BusinessRuleException,
    DomainException,
    NotFoundException,
    PaymentProviderException,
    RepositoryException,
    ValidationException,
)
from ..core.timezone_utils import business_today, scheduled_datetime, utc_now
from ..models.booking import HOLD_EXCLUDED_STATUSES, Booking, PaymentMethodType
from ..models.payment import FAILED_ATTEMPT_STATUS, Payment
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..utils.hold_policy import hold_window_end, should_hold_now
from .base import BaseService
from .config_service import ConfigService
from .stripe_service import StripeService, amount_to_cents

logger = logging.getLogger(__name__)

HOLD_METADATA_TYPE = "auto_hold"

# Reasons a booking is skipped without an error; it stays eligible for a later sweep
SKIP_BOOKING_CLOSED = "booking_closed"
SKIP_NO_PRICE = "no_price"
SKIP_NO_CUSTOMER = "no_stripe_customer"
SKIP_ACTIVE_HOLD = "active_hold_exists"
SKIP_NO_PAYMENT_METHOD = "no_payment_method"
SKIP_DEFERRED = "deferred"


class ResolvedPaymentMethod(NamedTuple):
    stripe_payment_method_id: str
    last4: Optional[str]
    source: str  # saved | provider


@dataclass
class HoldResult:
    """Outcome of one hold placement attempt."""

    booking_id: str
    success: bool
    payment: Optional[Payment] = None
    error: Optional[str] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return not self.success and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "success": self.success,
            "payment_id": self.payment.id if self.payment else None,
            "payment_intent_id": self.payment.stripe_payment_intent_id if self.payment else None,
            "status": self.payment.status if self.payment else None,
            "error": self.error,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class HoldReleaseResult:
    payment_id: str
    payment_intent_id: Optional[str]
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "payment_intent_id": self.payment_intent_id,
            "success": self.success,
            "status": self.status,
            "error": self.error,
        }


class SweepSummary(TypedDict):
    processed: int
    success: int
    failed: int
    skipped: int
    errors: List[str]
    delay_hours: Optional[int]
    message: Optional[str]


@dataclass
class SweepResult:
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    delay_hours: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> SweepSummary:
        return {
            "processed": self.processed,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "delay_hours": self.delay_hours,
            "message": self.message,
        }


class PaymentHoldService(BaseService):
    """Places, releases, adjusts and captures payment holds."""

    def __init__(
        self,
        db: Session,
        *,
        stripe_service: Optional[StripeService] = None,
        config_service: Optional[ConfigService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.config_service = config_service or ConfigService(db)
        self.stripe_service = stripe_service or StripeService()

    # ------------------------------------------------------------------ #
    # Placement
    # ------------------------------------------------------------------ #

    def resolve_payment_method(
        self, client: User, payment_method_id: Optional[str] = None
    ) -> Optional[ResolvedPaymentMethod]:
        """
        Pick the card a hold is authorized against.

        Order: an explicitly chosen saved card, the client's saved cards
        (default first, then most recently updated), then the oldest card
        Stripe has on file for the customer.
        """
        saved_methods = self.payment_repository.get_saved_payment_methods(client.id)

        if payment_method_id:
            for method in saved_methods:
                if payment_method_id in (method.id, method.stripe_payment_method_id):
                    return ResolvedPaymentMethod(method.stripe_payment_method_id, method.last4, "saved")
            raise ValidationException(
                "Payment method does not belong to this client",
                code="INVALID_PAYMENT_METHOD",
                details={"payment_method_id": payment_method_id, "client_id": client.id},
            )

        if saved_methods:
            method = saved_methods[0]
            return ResolvedPaymentMethod(method.stripe_payment_method_id, method.last4, "saved")

        provider_methods = self.stripe_service.list_customer_payment_methods(
            client.stripe_customer_id
        )
        if not provider_methods:
            return None
        oldest = provider_methods[0]
        card = getattr(oldest, "card", None)
        return ResolvedPaymentMethod(oldest.id, getattr(card, "last4", None), "provider")

    def _skip(self, booking: Booking, reason: str) -> HoldResult:
        self.logger.info(f"Skipping payment hold for booking {booking.id}: {reason}")
        prometheus_metrics.inc_payment_hold("skipped")
        return HoldResult(booking_id=booking.id, success=False, skipped_reason=reason)

    def _fail(self, booking: Booking, message: str) -> HoldResult:
        self.logger.error(f"Payment hold failed for booking {booking.id}: {message}")
        prometheus_metrics.inc_payment_hold("failed")
        return HoldResult(booking_id=booking.id, success=False, error=message)

    @BaseService.measure_operation("place_hold")
    def place_hold(self, booking: Booking, *, payment_method_id: Optional[str] = None) -> HoldResult:
        """
        Authorize the booking's price on the client's card without capturing it.

        Preconditions that are not met (no price, no Stripe customer, an
        active hold already present, no usable card) skip the booking. A
        provider failure leaves the booking untouched and is returned as a
        failed HoldResult.
        """
        if booking.status in {status.value for status in HOLD_EXCLUDED_STATUSES}:
            return self._skip(booking, SKIP_BOOKING_CLOSED)

        price = Decimal(booking.final_price) if booking.final_price is not None else Decimal("0")
        if price <= 0:
            return self._skip(booking, SKIP_NO_PRICE)

        client = booking.client
        if client is None or not client.stripe_customer_id:
            return self._skip(booking, SKIP_NO_CUSTOMER)

        if self.payment_repository.has_active_hold(booking.id):
            return self._skip(booking, SKIP_ACTIVE_HOLD)

        try:
            method = self.resolve_payment_method(client, payment_method_id)
        except PaymentProviderException as e:
            return self._fail(booking, e.message)
        if method is None:
            self.logger.warning(
                f"No payment method found for client {client.id}; booking {booking.id} stays unheld"
            )
            return self._skip(booking, SKIP_NO_PAYMENT_METHOD)

        # Re-check right before the provider call; the card lookup may have taken a while
        if self.payment_repository.has_active_hold(booking.id):
            return self._skip(booking, SKIP_ACTIVE_HOLD)

        attempt = self.payment_repository.count_authorization_attempts(booking.id) + 1
        try:
            payment_intent = self.stripe_service.create_manual_authorization(
                customer_id=client.stripe_customer_id,
                payment_method_id=method.stripe_payment_method_id,
                amount_cents=amount_to_cents(price),
                description=f"Automatic payment hold for booking {booking.id}",
                metadata={
                    "booking_id": booking.id,
                    "client_id": client.id,
                    "type": HOLD_METADATA_TYPE,
                },
                idempotency_key=f"booking-hold:{booking.id}:{attempt}",
            )
        except PaymentProviderException as e:
            self._record_failed_attempt(booking, method, price, e.message)
            return self._fail(booking, e.message)

        return self._record_hold(booking, payment_intent, method, price)

    def _record_hold(
        self,
        booking: Booking,
        payment_intent: Any,
        method: ResolvedPaymentMethod,
        amount: Decimal,
    ) -> HoldResult:
        booking_id = booking.id
        try:
            with self.transaction():
                payment = self.payment_repository.create_payment_record(
                    booking_id=booking_id,
                    amount=amount,
                    status=payment_intent.status,
                    description=f"Payment hold for booking {booking_id}",
                    payment_intent_id=payment_intent.id,
                    payment_method_id=method.stripe_payment_method_id,
                    is_captured=False,
                )
                booking.payment_method = PaymentMethodType.CREDIT_CARD.value
                booking.payment_details = (
                    f"Card ending in {method.last4 or '????'} - Auto Hold: {payment_intent.id}"
                )
        except (RepositoryException, DomainException) as e:
            existing = self.payment_repository.get_payment_by_intent_id(payment_intent.id)
            if existing is not None:
                # Same idempotency key from a concurrent run: Stripe returned the intent we already hold
                self.logger.warning(
                    f"Duplicate authorization {payment_intent.id} for booking {booking_id} "
                    f"already recorded by another run"
                )
                prometheus_metrics.inc_payment_hold("duplicate")
                return HoldResult(
                    booking_id=booking_id, success=False, payment=existing, skipped_reason=SKIP_ACTIVE_HOLD
                )
            self._release_orphaned_authorization(booking_id, payment_intent.id)
            return self._fail(booking, f"Could not record authorization {payment_intent.id}: {e}")

        active_holds = self.payment_repository.get_active_holds(booking_id)
        if len(active_holds) > 1:
            self.logger.warning(
                f"Booking {booking_id} has {len(active_holds)} active holds "
                f"({', '.join(h.stripe_payment_intent_id or '' for h in active_holds)}); needs cleanup"
            )
            prometheus_metrics.inc_payment_hold("duplicate")

        self.logger.info(
            f"Placed payment hold {payment_intent.id} ({payment_intent.status}) "
            f"for booking {booking_id} using {method.source} card"
        )
        prometheus_metrics.inc_payment_hold("placed")
        return HoldResult(booking_id=booking_id, success=True, payment=payment)

    def _release_orphaned_authorization(self, booking_id: str, payment_intent_id: str) -> None:
        try:
            self.stripe_service.cancel_payment_intent(payment_intent_id)
            self.logger.warning(
                f"Released unrecorded authorization {payment_intent_id} for booking {booking_id}"
            )
        except PaymentProviderException as e:
            self.logger.error(
                f"Authorization {payment_intent_id} for booking {booking_id} is not recorded "
                f"and could not be released: {e.message}"
            )

    def _record_failed_attempt(
        self, booking: Booking, method: ResolvedPaymentMethod, amount: Decimal, message: str
    ) -> None:
        """
        Keep a `failed` payment row for a declined authorization.

        The row counts toward the attempt number in the idempotency key, so the
        next sweep or manual retry reaches Stripe with a fresh key instead of
        replaying the cached decline.
        """
        try:
            with self.transaction():
                self.payment_repository.create_payment_record(
                    booking_id=booking.id,
                    amount=amount,
                    status=FAILED_ATTEMPT_STATUS,
                    description=f"Payment hold declined for booking {booking.id}: {message}",
                    payment_method_id=method.stripe_payment_method_id,
                    is_captured=False,
                )
        except (RepositoryException, DomainException) as e:
            self.logger.error(f"Could not record failed hold attempt for booking {booking.id}: {e}")

    @BaseService.measure_operation("hold_or_defer")
    def hold_or_defer(
        self,
        booking: Booking,
        *,
        now: Optional[datetime] = None,
        payment_method_id: Optional[str] = None,
    ) -> HoldResult:
        """
        Place a hold now if the booking is inside the configured lead window,
        otherwise record on the booking that the sweep will place it later.
        """
        now = now or utc_now()
        delay_hours = self.config_service.get_payment_hold_delay_hours()
        scheduled_at = scheduled_datetime(booking.scheduled_date, booking.scheduled_time)

        if should_hold_now(scheduled_at, now, delay_hours):
            return self.place_hold(booking, payment_method_id=payment_method_id)

        with self.transaction():
            booking.payment_method = PaymentMethodType.CREDIT_CARD.value
            booking.payment_details = (
                f"Payment hold deferred - will be placed {delay_hours} hours before booking"
            )
        self.logger.info(
            f"Deferred payment hold for booking {booking.id} "
            f"(starts {scheduled_at.isoformat()}, window {delay_hours}h)"
        )
        return HoldResult(booking_id=booking.id, success=False, skipped_reason=SKIP_DEFERRED)

    # ------------------------------------------------------------------ #
    # Release, adjust, capture
    # ------------------------------------------------------------------ #

    def release_holds(self, booking: Booking) -> List[HoldReleaseResult]:
        """
        Cancel every active authorization of a booking at Stripe.

        Failures are logged and returned; they never raise. Status changes are
        flushed, the caller commits them with its own booking changes.
        """
        results: List[HoldReleaseResult] = []
        for payment in self.payment_repository.get_active_holds(booking.id):
            intent_id = payment.stripe_payment_intent_id
            try:
                payment_intent = self.stripe_service.cancel_payment_intent(intent_id)
            except PaymentProviderException as e:
                self.logger.error(
                    f"Failed to release hold {intent_id} for booking {booking.id}: {e.message}"
                )
                prometheus_metrics.inc_payment_hold("release_failed")
                results.append(
                    HoldReleaseResult(
                        payment_id=payment.id,
                        payment_intent_id=intent_id,
                        success=False,
                        status=payment.status,
                        error=e.message,
                    )
                )
                continue

            self.payment_repository.update_payment(payment, status=payment_intent.status)
            self.logger.info(f"Released hold {intent_id} for booking {booking.id}")
            prometheus_metrics.inc_payment_hold("released")
            results.append(
                HoldReleaseResult(
                    payment_id=payment.id,
                    payment_intent_id=intent_id,
                    success=True,
                    status=payment_intent.status,
                )
            )
        return results

    @BaseService.measure_operation("cancel_hold")
    def cancel_hold(self, booking_id: str) -> List[HoldReleaseResult]:
        """Admin release of a booking's active holds."""
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        if not self.payment_repository.has_active_hold(booking_id):
            raise ValidationException(
                "No active payment hold found for this booking",
                code="NO_ACTIVE_HOLD",
                details={"booking_id": booking_id},
            )
        with self.transaction():
            return self.release_holds(booking)

    @BaseService.measure_operation("adjust_hold_amount")
    def adjust_hold_amount(self, booking: Booking) -> Optional[HoldResult]:
        """
        Re-authorize an active hold for the booking's current price.

        The new authorization is created with the same card before the old one
        is released. If it is declined, or the old hold cannot be released, the
        old hold stays in place and any new authorization is canceled. Returns
        None when there is nothing to adjust.
        """
        holds = self.payment_repository.get_active_holds(booking.id)
        if not holds:
            return None
        current = holds[-1]
        if current.status != "requires_capture" or not current.stripe_payment_method_id:
            self.logger.info(
                f"Hold {current.stripe_payment_intent_id} for booking {booking.id} is "
                f"{current.status}; not adjusting"
            )
            return None

        new_amount = Decimal(booking.final_price) if booking.final_price is not None else Decimal("0")
        if amount_to_cents(new_amount) == amount_to_cents(current.amount):
            return None

        if new_amount <= 0:
            with self.transaction():
                released = self.release_holds(booking)
            failed = [r for r in released if not r.success]
            if failed:
                return self._fail(booking, failed[0].error or "Failed to release hold")
            return HoldResult(booking_id=booking.id, success=True)

        client = booking.client
        if client is None or not client.stripe_customer_id:
            return self._skip(booking, SKIP_NO_CUSTOMER)

        last4 = None
        if booking.payment_details and "ending in " in booking.payment_details:
            last4 = booking.payment_details.split("ending in ", 1)[1][:4]
        method = ResolvedPaymentMethod(current.stripe_payment_method_id, last4, "saved")

        attempt = self.payment_repository.count_authorization_attempts(booking.id) + 1
        try:
            payment_intent = self.stripe_service.create_manual_authorization(
                customer_id=client.stripe_customer_id,
                payment_method_id=current.stripe_payment_method_id,
                amount_cents=amount_to_cents(new_amount),
                description=f"Updated payment hold for booking {booking.id}",
                metadata={
                    "booking_id": booking.id,
                    "client_id": client.id,
                    "type": HOLD_METADATA_TYPE,
                    "replaces": current.stripe_payment_intent_id or "",
                },
                idempotency_key=f"booking-hold:{booking.id}:{attempt}",
            )
        except PaymentProviderException as e:
            self._record_failed_attempt(booking, method, new_amount, e.message)
            return self._fail(booking, e.message)

        with self.transaction():
            release = self.release_holds(booking)
        unreleased = [r for r in release if not r.success]
        if unreleased:
            # Never leave two live authorizations on one booking
            self._release_orphaned_authorization(booking.id, payment_intent.id)
            return self._fail(
                booking,
                f"Old hold {unreleased[0].payment_intent_id} could not be released: "
                f"{unreleased[0].error}",
            )
        return self._record_hold(booking, payment_intent, method, new_amount)

    @BaseService.measure_operation("capture_hold")
    def capture_hold(self, payment_id: str) -> Payment:
        """Capture a held authorization. Provider failures propagate to the caller."""
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        if not payment.stripe_payment_intent_id:
            raise ValidationException(
                "This payment has no authorization to capture",
                code="NO_AUTHORIZATION",
                details={"payment_id": payment_id},
            )
        if payment.is_captured:
            raise BusinessRuleException(
                "This payment has already been captured",
                code="ALREADY_CAPTURED",
                details={"payment_id": payment_id},
            )
        if payment.status != "requires_capture":
            raise ValidationException(
                f"Cannot capture payment with status: {payment.status}",
                code="NOT_CAPTURABLE",
                details={"payment_id": payment_id, "status": payment.status},
            )

        payment_intent = self.stripe_service.capture_payment_intent(
            payment.stripe_payment_intent_id,
            idempotency_key=f"capture:{payment.stripe_payment_intent_id}",
        )
        captured = payment_intent.status == "succeeded"
        with self.transaction():
            self.payment_repository.update_payment(
                payment,
                status=payment_intent.status,
                is_captured=captured,
                paid_at=datetime.now(timezone.utc) if captured else None,
            )
        self.logger.info(
            f"Captured hold {payment.stripe_payment_intent_id} for booking {payment.booking_id}"
        )
        return payment

    # ------------------------------------------------------------------ #
    # Sweep
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("sweep_payment_holds")
    def sweep(
        self, override_delay_hours: Optional[int] = None, *, now: Optional[datetime] = None
    ) -> SweepResult:
        """
        Place holds on bookings that entered the lead window.

        Selection: status not CANCELLED/COMPLETED/IN_PROGRESS, no active hold,
        and a start time in (now, now + delay]. Each booking is its own
        transaction; a failure is collected and the sweep moves on.
        """
        now = now or utc_now()
        delay_hours = (
            override_delay_hours
            if override_delay_hours is not None
            else self.config_service.get_payment_hold_delay_hours()
        )
        result = SweepResult(delay_hours=delay_hours)

        if not delay_hours:
            result.message = "No payment hold delay configured"
            self.logger.info("Payment hold sweep skipped: holds are placed at booking time")
            prometheus_metrics.inc_hold_sweep_run("disabled")
            return result

        window_end = hold_window_end(now, delay_hours)
        candidates = self.booking_repository.get_hold_sweep_candidates(
            business_today(now), business_today(window_end)
        )
        self.logger.info(
            f"Payment hold sweep: {len(candidates)} candidate bookings "
            f"for window {now.isoformat()} - {window_end.isoformat()}"
        )

        for booking in candidates:
            booking_id = booking.id
            try:
                scheduled_at = scheduled_datetime(booking.scheduled_date, booking.scheduled_time)
            except ValidationException as e:
                result.processed += 1
                result.failed += 1
                result.errors.append(f"Booking {booking_id}: {e.message}")
                continue
            if scheduled_at <= now or not should_hold_now(scheduled_at, now, delay_hours):
                continue

            result.processed += 1
            try:
                hold = self.place_hold(booking)
            except Exception as e:
                self.db.rollback()
                result.failed += 1
                result.errors.append(f"Booking {booking_id}: {e}")
                self.logger.error(f"Payment hold sweep failed for booking {booking_id}: {e}")
                continue

            if hold.success:
                result.success += 1
            elif hold.error:
                result.failed += 1
                result.errors.append(f"Booking {booking_id}: {hold.error}")
            else:
                result.skipped += 1

        if result.failed:
            self.logger.warning(
                f"Payment hold sweep completed with {result.failed} failures: {result.errors}"
            )
        self.logger.info(
            f"Payment hold sweep completed: {result.processed} processed, "
            f"{result.success} held, {result.failed} failed, {result.skipped} skipped"
        )
        prometheus_metrics.inc_hold_sweep_run("partial" if result.failed else "completed")
        return result
