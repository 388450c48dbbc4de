"""
Payment Repository for the CleanOps backend.

Handles:
- Booking payment records (holds, charges, fees, refunds)
- The "active hold" predicate shared with the booking sweep query
- Saved payment methods of clients
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, List, Optional, cast

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from ..core.exceptions import RepositoryException
from ..models.payment import (
    FAILED_ATTEMPT_STATUS,
    INACTIVE_HOLD_STATUSES,
    Payment,
    SavedPaymentMethod,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def active_hold_filter() -> ColumnElement[bool]:
    """SQL form of `Payment.is_active_hold`: uncaptured, authorized, not canceled/failed."""
    return and_(
        Payment.is_captured.is_(False),
        Payment.stripe_payment_intent_id.isnot(None),
        Payment.status.notin_(INACTIVE_HOLD_STATUSES),
    )


class PaymentRepository(BaseRepository[Payment]):
    """Repository for booking payments and saved cards."""

    def __init__(self, db: Session):
        super().__init__(db, Payment)
        self.logger = logging.getLogger(__name__)

    # ========== Payment Records ==========

    def create_payment_record(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        status: str,
        description: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        payment_method_id: Optional[str] = None,
        is_captured: bool = False,
        paid_at: Optional[datetime] = None,
    ) -> Payment:
        """
        Create a payment record for a booking.

        Raises:
            RepositoryException: If creation fails (including a duplicate intent id)
        """
        return self.create(
            booking_id=booking_id,
            amount=amount,
            status=status,
            description=description,
            stripe_payment_intent_id=payment_intent_id,
            stripe_payment_method_id=payment_method_id,
            is_captured=is_captured,
            paid_at=paid_at,
        )

    def get_active_holds(self, booking_id: str) -> List[Payment]:
        """Active holds of a booking, oldest first. More than one is an anomaly."""
        try:
            return cast(
                List[Payment],
                self.db.query(Payment)
                .filter(Payment.booking_id == booking_id, active_hold_filter())
                .order_by(Payment.created_at)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get active holds for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to get active holds: {str(e)}")

    def has_active_hold(self, booking_id: str) -> bool:
        try:
            return (
                self.db.query(Payment.id)
                .filter(Payment.booking_id == booking_id, active_hold_filter())
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to check active hold for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to check active hold: {str(e)}")

    def count_authorization_attempts(self, booking_id: str) -> int:
        """Authorizations ever sent to Stripe for a booking, declined ones included."""
        try:
            return int(
                self.db.query(func.count(Payment.id))
                .filter(
                    Payment.booking_id == booking_id,
                    or_(
                        Payment.stripe_payment_intent_id.isnot(None),
                        Payment.status == FAILED_ATTEMPT_STATUS,
                    ),
                )
                .scalar()
                or 0
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to count authorizations for {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to count authorizations: {str(e)}")

    def get_payment_by_intent_id(self, payment_intent_id: str) -> Optional[Payment]:
        try:
            return cast(
                Optional[Payment],
                self.db.query(Payment)
                .filter(Payment.stripe_payment_intent_id == payment_intent_id)
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by intent ID: {str(e)}")
            raise RepositoryException(f"Failed to get payment by intent ID: {str(e)}")

    def update_payment(self, payment: Payment, **fields: Any) -> Payment:
        return self.update(payment, **fields)

    # ========== Saved Payment Methods ==========

    def get_saved_payment_methods(self, user_id: str) -> List[SavedPaymentMethod]:
        """Saved cards of a client, most recently marked default first."""
        try:
            return cast(
                List[SavedPaymentMethod],
                self.db.query(SavedPaymentMethod)
                .filter(SavedPaymentMethod.user_id == user_id)
                .order_by(
                    SavedPaymentMethod.is_default.desc(),
                    func.coalesce(
                        SavedPaymentMethod.updated_at, SavedPaymentMethod.created_at
                    ).desc(),
                    SavedPaymentMethod.created_at.desc(),
                )
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get saved payment methods for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to get saved payment methods: {str(e)}")

    def get_saved_payment_method(self, method_id: str) -> Optional[SavedPaymentMethod]:
        try:
            return cast(
                Optional[SavedPaymentMethod],
                self.db.query(SavedPaymentMethod).filter(SavedPaymentMethod.id == method_id).first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get saved payment method {method_id}: {str(e)}")
            raise RepositoryException(f"Failed to get saved payment method: {str(e)}")
