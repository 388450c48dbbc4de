"""Schemas for the runtime configuration singleton."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field

from .base import Money, StandardizedModel, StrictRequestModel


class ConfigurationResponse(StandardizedModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    payment_hold_delay_hours: Optional[int] = None
    cancellation_window_hours: int
    cancellation_fee_amount: Money
    updated_at: Optional[datetime] = None


class ConfigurationUpdateRequest(StrictRequestModel):
    """Only fields present in the body are changed; null clears the hold delay."""

    payment_hold_delay_hours: Optional[int] = Field(
        None, gt=0, description="Hours before a booking its payment hold is placed"
    )
    cancellation_window_hours: Optional[int] = Field(None, ge=0)
    cancellation_fee_amount: Optional[Decimal] = Field(None, ge=0)


class ConfigurationUpdateResponse(StandardizedModel):
    configuration: ConfigurationResponse
    hold_delay_changed: bool = False
    sweep_task_id: Optional[str] = None
