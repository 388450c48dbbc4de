"""Repository for the configuration singleton."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..models.configuration import CONFIGURATION_ID, Configuration
from .base_repository import BaseRepository


class ConfigurationRepository(BaseRepository[Configuration]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Configuration)

    def get(self) -> Optional[Configuration]:
        return self.get_by_id(CONFIGURATION_ID)

    def get_or_create(self) -> Configuration:
        """Return the singleton, creating it from settings defaults on first use."""
        record = self.get()
        if record is not None:
            return record
        try:
            record = Configuration(
                id=CONFIGURATION_ID,
                payment_hold_delay_hours=settings.default_payment_hold_delay_hours,
                cancellation_window_hours=settings.default_cancellation_window_hours,
                cancellation_fee_amount=Decimal(str(settings.default_cancellation_fee)),
            )
            self.db.add(record)
            self.db.flush()
            return cast(Configuration, record)
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating configuration singleton: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create configuration: {str(e)}")

    def upsert(self, **fields: Any) -> Configuration:
        record = self.get_or_create()
        return self.update(record, **fields)


__all__ = ["ConfigurationRepository"]
