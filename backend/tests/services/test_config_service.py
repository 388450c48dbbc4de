# backend/tests/services/test_config_service.py
"""Tests for the configuration singleton service."""

from decimal import Decimal

import pytest

from app.core.exceptions import ValidationException
from app.models.configuration import Configuration
from app.services.config_service import ConfigService


@pytest.fixture
def config_service(db):
    return ConfigService(db)


class TestGetConfiguration:
    def test_created_with_defaults(self, db, config_service):
        configuration = config_service.get_configuration()

        assert configuration.payment_hold_delay_hours is None
        assert configuration.cancellation_window_hours == 24
        assert Decimal(configuration.cancellation_fee_amount) == Decimal("50")

    def test_singleton(self, db, config_service):
        config_service.get_configuration()
        db.commit()
        config_service.get_configuration()
        db.commit()

        assert db.query(Configuration).count() == 1


class TestUpdateConfiguration:
    def test_setting_hold_delay(self, config_service):
        update = config_service.update_configuration({"payment_hold_delay_hours": 48})

        assert update.configuration.payment_hold_delay_hours == 48
        assert update.previous_hold_delay_hours is None
        assert update.hold_delay_changed is True

    def test_unchanged_hold_delay(self, config_service):
        config_service.update_configuration({"payment_hold_delay_hours": 48})

        update = config_service.update_configuration(
            {"payment_hold_delay_hours": 48, "cancellation_window_hours": 12}
        )

        assert update.hold_delay_changed is False
        assert update.configuration.cancellation_window_hours == 12

    def test_null_clears_hold_delay(self, config_service):
        config_service.update_configuration({"payment_hold_delay_hours": 24})

        update = config_service.update_configuration({"payment_hold_delay_hours": None})

        assert update.configuration.payment_hold_delay_hours is None
        assert update.hold_delay_changed is True

    def test_absent_key_is_left_alone(self, config_service):
        config_service.update_configuration({"payment_hold_delay_hours": 24})

        update = config_service.update_configuration({"cancellation_fee_amount": "12.5"})

        assert update.configuration.payment_hold_delay_hours == 24
        assert update.configuration.cancellation_fee_amount == Decimal("12.50")

    @pytest.mark.parametrize("value", [0, -5, True, "48", 1.5])
    def test_invalid_hold_delay(self, config_service, value):
        with pytest.raises(ValidationException) as exc_info:
            config_service.update_configuration({"payment_hold_delay_hours": value})
        assert exc_info.value.code == "INVALID_HOLD_DELAY"

    def test_invalid_cancellation_window(self, config_service):
        with pytest.raises(ValidationException) as exc_info:
            config_service.update_configuration({"cancellation_window_hours": -1})
        assert exc_info.value.code == "INVALID_CANCELLATION_WINDOW"

    @pytest.mark.parametrize("value", ["-1", "abc", "NaN", None])
    def test_invalid_cancellation_fee(self, config_service, value):
        with pytest.raises(ValidationException) as exc_info:
            config_service.update_configuration({"cancellation_fee_amount": value})
        assert exc_info.value.code == "INVALID_CANCELLATION_FEE"

    def test_unknown_field(self, db, config_service):
        with pytest.raises(ValidationException) as exc_info:
            config_service.update_configuration({"surge_multiplier": 2})
        assert exc_info.value.code == "INVALID_CONFIGURATION"
        assert db.query(Configuration).count() == 0
