"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from storefront_billing.config.settings import Settings
from storefront_billing.domain.dunning import DunningConfig


class TestDunningSettings:

    def test_defaults_build_default_policy(self):
        settings = Settings(_env_file=None)
        assert DunningConfig.from_settings(settings) == DunningConfig()

    def test_schedule_length_mismatch_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, dunning_max_attempts=3, dunning_retry_schedule=[1, 3, 5, 7])

    def test_zero_attempts_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, dunning_max_attempts=0, dunning_retry_schedule=[])

    def test_negative_grace_period_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, dunning_grace_period_days=-1)

    def test_schedule_from_environment(self, monkeypatch):
        monkeypatch.setenv("DUNNING_MAX_ATTEMPTS", "2")
        monkeypatch.setenv("DUNNING_RETRY_SCHEDULE", "[2, 6]")

        settings = Settings(_env_file=None)
        assert settings.dunning_retry_schedule == [2, 6]


class TestEnvironmentFlags:

    def test_production_flag(self):
        settings = Settings(_env_file=None, environment="Production")
        assert settings.is_production is True
        assert settings.is_development is False
