"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from goldenarrow.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(xpub_key=None, _env_file=None)

        assert settings.has_xpub is False
        assert settings.min_confirmations >= 1
        assert settings.usdt_decimals == 18

    def test_rpc_endpoint_appends_api_key(self):
        settings = Settings(
            bsc_rpc_url="https://bnb-mainnet.g.alchemy.com/v2/",
            alchemy_api_key="secret",
            _env_file=None,
        )

        assert settings.rpc_endpoint == "https://bnb-mainnet.g.alchemy.com/v2/secret"

    def test_safe_dict_redacts_secrets(self, account_xpub):
        settings = Settings(
            database_url="postgresql+asyncpg://app:hunter2@db:5432/wallet",
            admin_token="admin-secret",
            gateway_token="gateway-secret",
            xpub_key=account_xpub,
            alchemy_api_key="alchemy-secret",
            _env_file=None,
        )

        safe = str(settings.get_safe_dict())

        assert "hunter2" not in safe
        assert "admin-secret" not in safe
        assert "gateway-secret" not in safe
        assert "alchemy-secret" not in safe
        assert account_xpub not in safe
        assert settings.get_safe_dict()["xpub_configured"] is True

    def test_rejects_negative_start_index(self):
        with pytest.raises(ValidationError):
            Settings(derivation_start_index=-1, _env_file=None)
