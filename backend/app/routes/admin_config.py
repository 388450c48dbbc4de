"""Admin configuration routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from app.api.dependencies.services import get_config_service
from app.core.exceptions import DomainException
from app.routes.admin_bookings import handle_domain_exception
from app.schemas.configuration import (
    ConfigurationResponse,
    ConfigurationUpdateRequest,
    ConfigurationUpdateResponse,
)
from app.services.config_service import ConfigService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/config", tags=["admin-config"])


def enqueue_hold_sweep(delay_hours: Optional[int]) -> Optional[str]:
    """Queue a sweep with the new window; returns the task id, or None if queueing failed."""
    from app.tasks.payment_tasks import sweep_payment_holds

    try:
        result = sweep_payment_holds.delay(override_delay_hours=delay_hours)
    except Exception as exc:
        logger.error(f"Failed to enqueue payment hold sweep after config change: {exc}")
        return None
    logger.info(f"Enqueued payment hold sweep {result.id} with delay {delay_hours}h")
    return str(result.id)


@router.get("", response_model=ConfigurationResponse)
def get_configuration(
    service: ConfigService = Depends(get_config_service),
) -> ConfigurationResponse:
    return ConfigurationResponse.model_validate(service.get_configuration())


@router.patch("", response_model=ConfigurationUpdateResponse)
def update_configuration(
    payload: ConfigurationUpdateRequest,
    service: ConfigService = Depends(get_config_service),
) -> ConfigurationUpdateResponse:
    """
    Update the configuration singleton.

    A changed hold window triggers a background sweep so bookings now inside
    it get their holds without waiting for the next scheduled run. The save
    succeeds even if the sweep cannot be queued.
    """
    try:
        update = service.update_configuration(payload.model_dump(exclude_unset=True))
    except DomainException as exc:
        handle_domain_exception(exc)

    task_id = None
    delay_hours = update.configuration.payment_hold_delay_hours
    if update.hold_delay_changed and delay_hours is not None:
        task_id = enqueue_hold_sweep(delay_hours)

    return ConfigurationUpdateResponse(
        configuration=ConfigurationResponse.model_validate(update.configuration),
        hold_delay_changed=update.hold_delay_changed,
        sweep_task_id=task_id,
    )
