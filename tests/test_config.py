import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.estimate_debounce_seconds == 0.8
        assert settings.service_city == "Los Angeles"
        assert settings.handoff_ttl_seconds == 1800
        assert settings.checkout_idle_timeout_seconds == 1800
        assert settings.checkout_sweep_interval_seconds == 60.0

    def test_delivery_url_trailing_slash(self):
        settings = Settings(_env_file=None, delivery_api_url="https://delivery.example.com/api/")
        assert settings.delivery_api_url == "https://delivery.example.com/api"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ESTIMATE_DEBOUNCE_SECONDS", "0.25")
        monkeypatch.setenv("SERVICE_CITY", "Pasadena")

        settings = Settings(_env_file=None)

        assert settings.estimate_debounce_seconds == 0.25
        assert settings.service_city == "Pasadena"

    def test_negative_debounce_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, estimate_debounce_seconds=-1)
