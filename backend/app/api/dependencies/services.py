# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets services bound to its own database session. Tests replace
`get_db` (and, where Stripe must not be called, `get_stripe_service`) through
`app.dependency_overrides`.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.booking_service import BookingService
from ...services.config_service import ConfigService
from ...services.payment_hold_service import PaymentHoldService
from ...services.stripe_service import StripeService
from .database import get_db


def get_stripe_service() -> StripeService:
    return StripeService()


def get_config_service(db: Session = Depends(get_db)) -> ConfigService:
    return ConfigService(db)


def get_payment_hold_service(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    config_service: ConfigService = Depends(get_config_service),
) -> PaymentHoldService:
    """Get the payment hold service wired to the request session."""
    return PaymentHoldService(db, stripe_service=stripe_service, config_service=config_service)


def get_booking_service(
    db: Session = Depends(get_db),
    hold_service: PaymentHoldService = Depends(get_payment_hold_service),
    config_service: ConfigService = Depends(get_config_service),
) -> BookingService:
    """
    Get booking service instance with all dependencies.

    Args:
        db: Database session
        hold_service: Payment hold service sharing the same session
        config_service: Configuration singleton access

    Returns:
        BookingService instance
    """
    return BookingService(db, hold_service=hold_service, config_service=config_service)
