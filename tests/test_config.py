"""Unit tests for core/config.py -- Settings validation."""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings


class TestSecretKey:
    def test_production_requires_secret_key(self) -> None:
        """DEBUG=false with no SECRET_KEY refuses to start."""
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_debug_generates_secret_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_short_secret_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(debug=False, secret_key="too-short")


class TestLifetimes:
    def test_defaults(self) -> None:
        """Access 15 minutes, refresh 7 days, reset 15 minutes."""
        settings = Settings(secret_key="k" * 32)
        assert settings.access_token_expire_seconds == 900
        assert settings.refresh_token_expire_seconds == 7 * 24 * 60 * 60
        assert settings.reset_token_expire_seconds == 900

    @pytest.mark.parametrize(
        "field", ["access_token_expire_seconds", "refresh_token_expire_seconds", "reset_token_expire_seconds"]
    )
    def test_non_positive_lifetime_rejected(self, field) -> None:
        with pytest.raises(ValidationError, match="positive"):
            Settings(secret_key="k" * 32, **{field: 0})


def test_get_settings_is_a_singleton() -> None:
    """get_settings() returns the same cached instance on every call."""
    assert get_settings() is get_settings()
