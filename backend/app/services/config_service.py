"""Service for the runtime configuration singleton."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import ValidationException
from ..models.configuration import Configuration
from ..repositories.factory import RepositoryFactory
from .base import BaseService

EDITABLE_FIELDS = (
    "payment_hold_delay_hours",
    "cancellation_window_hours",
    "cancellation_fee_amount",
)


@dataclass
class ConfigurationUpdate:
    configuration: Configuration
    previous_hold_delay_hours: Optional[int]

    @property
    def hold_delay_changed(self) -> bool:
        return self.configuration.payment_hold_delay_hours != self.previous_hold_delay_hours


class ConfigService(BaseService):
    """Reads and updates the configuration singleton."""

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repo = RepositoryFactory.create_configuration_repository(db)

    def get_configuration(self) -> Configuration:
        return self.repo.get_or_create()

    def get_payment_hold_delay_hours(self) -> Optional[int]:
        return self.get_configuration().payment_hold_delay_hours

    @BaseService.measure_operation("update_configuration")
    def update_configuration(self, changes: Mapping[str, Any]) -> ConfigurationUpdate:
        """
        Validate and persist configuration changes.

        Only keys present in `changes` are written, so an explicit None clears
        the hold delay while an absent key leaves it alone.
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationException(
                f"Unknown configuration fields: {', '.join(sorted(unknown))}",
                code="INVALID_CONFIGURATION",
            )
        values = {key: self._validate(key, value) for key, value in changes.items()}

        with self.transaction():
            configuration = self.repo.get_or_create()
            previous_delay = configuration.payment_hold_delay_hours
            self.repo.update(configuration, **values)

        self.logger.info(
            f"Configuration updated: {values} (hold delay {previous_delay} -> "
            f"{configuration.payment_hold_delay_hours})"
        )
        return ConfigurationUpdate(
            configuration=configuration, previous_hold_delay_hours=previous_delay
        )

    @staticmethod
    def _validate(key: str, value: Any) -> Any:
        if key == "payment_hold_delay_hours":
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationException(
                    "Payment hold delay must be a positive whole number of hours or null",
                    code="INVALID_HOLD_DELAY",
                    details={"payment_hold_delay_hours": value},
                )
            return value
        if key == "cancellation_window_hours":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationException(
                    "Cancellation window must be a non-negative whole number of hours",
                    code="INVALID_CANCELLATION_WINDOW",
                    details={"cancellation_window_hours": value},
                )
            return value
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            amount = Decimal("-1")
        if value is None or not amount.is_finite() or amount < 0:
            raise ValidationException(
                "Cancellation fee must be a non-negative amount",
                code="INVALID_CANCELLATION_FEE",
                details={"cancellation_fee_amount": str(value)},
            )
        return amount.quantize(Decimal("0.01"))
