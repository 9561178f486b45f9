"""
Unit tests for Dependency Injection providers.

Validates that:
- Process-wide collaborators are singletons
- The dunning policy is read once and cached
- The batch-trigger guard accepts only the configured secret
"""

import pytest
from unittest.mock import patch

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from storefront_billing.config.settings import Settings


class TestSingletons:

    def test_gateway_provider_returns_same_instance(self):
        from storefront_billing.infrastructure.payments import get_billing_gateway

        assert get_billing_gateway() is get_billing_gateway()

    def test_notifier_provider_returns_same_instance(self):
        from storefront_billing.infrastructure.notifications.email_sender import get_email_notifier

        assert get_email_notifier() is get_email_notifier()

    def test_dunning_config_is_cached(self):
        from storefront_billing.api.dependencies import get_dunning_config

        get_dunning_config.cache_clear()
        assert get_dunning_config() is get_dunning_config()
        assert get_dunning_config().retry_schedule == (1, 3, 5, 7)
        get_dunning_config.cache_clear()


class TestCronSecret:

    @pytest.mark.asyncio
    async def test_open_without_configured_secret(self):
        from storefront_billing.api.dependencies import verify_cron_secret

        with patch("storefront_billing.api.dependencies.get_settings") as mock_settings:
            mock_settings.return_value = Settings(_env_file=None, cron_secret_key=None)
            assert await verify_cron_secret(None) is None

    @pytest.mark.asyncio
    async def test_matching_secret(self):
        from storefront_billing.api.dependencies import verify_cron_secret

        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="s3cret")
        with patch("storefront_billing.api.dependencies.get_settings") as mock_settings:
            mock_settings.return_value = Settings(_env_file=None, cron_secret_key="s3cret")
            assert await verify_cron_secret(credentials) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "wrong"])
    async def test_missing_or_wrong_secret(self, token):
        from storefront_billing.api.dependencies import verify_cron_secret

        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token) if token else None
        with patch("storefront_billing.api.dependencies.get_settings") as mock_settings:
            mock_settings.return_value = Settings(_env_file=None, cron_secret_key="s3cret")
            with pytest.raises(HTTPException) as exc_info:
                await verify_cron_secret(credentials)

        assert exc_info.value.status_code == 401
