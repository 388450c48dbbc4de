"""Schemas for the admin payment hold endpoints."""

from typing import List, Optional

from pydantic import Field

from .base import StandardizedModel, StrictRequestModel


class PlaceHoldRequest(StrictRequestModel):
    payment_method_id: Optional[str] = Field(
        None, description="Saved card to use instead of the default selection"
    )


class SweepRequest(StrictRequestModel):
    override_delay_hours: Optional[int] = Field(
        None, gt=0, description="Use this lead window instead of the configured one"
    )


class SweepResponse(StandardizedModel):
    processed: int
    success: int
    failed: int
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    delay_hours: Optional[int] = None
    message: Optional[str] = None
