"""
Unit tests for settings validation
"""
import pytest

from repair_booking.config import Settings, validate_settings


@pytest.mark.unit
class TestValidateSettings:

    def test_defaults_are_valid(self):
        validate_settings(Settings())

    @pytest.mark.parametrize("field,value", [
        ("offer_ttl_hours", 0),
        ("request_token_ttl_hours", -1),
        ("booking_horizon_days", 0),
        ("max_zones_per_block", 0),
        ("booking_fee_cents", -100),
        ("http_timeout_seconds", 0),
    ])
    def test_out_of_range(self, field, value):
        config = Settings(**{field: value})
        with pytest.raises(ValueError, match=field.upper()):
            validate_settings(config)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("BOOKING_HORIZON_DAYS", "14")
        assert Settings().booking_horizon_days == 14
