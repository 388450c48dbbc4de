"""
Repository layer for the CleanOps backend.

Repositories encapsulate all database queries; services never build
queries directly.
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .configuration_repository import ConfigurationRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "ConfigurationRepository",
    "PaymentRepository",
    "RepositoryFactory",
    "UserRepository",
]
