"""Tests for settings loaded from the environment."""

from __future__ import annotations

import pytest

from sqlexplain.exceptions import ConfigurationError
from sqlexplain.settings import BackendKind, Environment, Settings, get_settings


class TestGetSettings:
    def test_defaults(self) -> None:
        settings = get_settings({})

        assert settings == Settings()
        assert settings.environment is Environment.DEVELOPMENT
        assert settings.backend is BackendKind.REMOTE
        assert settings.cache_ttl_seconds == 3600
        assert settings.lock_ttl_seconds == 10
        assert settings.redis_url is None
        assert not settings.enable_rate_limiting

    def test_prefixed_values_are_coerced(self) -> None:
        settings = get_settings(
            {
                "SQLEXPLAIN_PORT": "8080",
                "SQLEXPLAIN_BACKEND": "stub",
                "SQLEXPLAIN_ENABLE_RATE_LIMITING": "true",
                "SQLEXPLAIN_REQUEST_TIMEOUT_SECONDS": "2.5",
                "SQLEXPLAIN_ENVIRONMENT": "test",
            }
        )

        assert settings.port == 8080
        assert settings.backend is BackendKind.STUB
        assert settings.enable_rate_limiting is True
        assert settings.request_timeout_seconds == 2.5
        assert settings.is_test

    def test_unprefixed_names_ignored(self) -> None:
        assert get_settings({"PORT": "9999"}).port == 3000

    def test_anthropic_key_fallback(self) -> None:
        assert get_settings({"ANTHROPIC_API_KEY": "sk-a"}).anthropic_api_key == "sk-a"

    def test_prefixed_key_wins(self) -> None:
        settings = get_settings(
            {"ANTHROPIC_API_KEY": "sk-a", "SQLEXPLAIN_ANTHROPIC_API_KEY": "sk-b"}
        )
        assert settings.anthropic_api_key == "sk-b"

    def test_empty_optional_values_are_unset(self) -> None:
        settings = get_settings({"SQLEXPLAIN_REDIS_URL": "", "ANTHROPIC_API_KEY": ""})
        assert settings.redis_url is None
        assert settings.anthropic_api_key is None

    def test_key_hidden_from_repr(self) -> None:
        assert "sk-secret" not in repr(get_settings({"ANTHROPIC_API_KEY": "sk-secret"}))

    @pytest.mark.parametrize(
        "key,value,field",
        [
            ("SQLEXPLAIN_PORT", "not-a-port", "port"),
            ("SQLEXPLAIN_BACKEND", "openai", "backend"),
            ("SQLEXPLAIN_CACHE_TTL_SECONDS", "0", "cache_ttl_seconds"),
        ],
    )
    def test_invalid_value(self, key: str, value: str, field: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            get_settings({key: value})

        assert exc_info.value.config_key == field
        assert field in exc_info.value.message
