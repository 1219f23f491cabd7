"""Tests for settings, the allow-list and startup validation."""

import pytest

from finbot.config import REQUIRED_ENV_VARS, FinbotSettings, check_environment, validate_startup
from finbot.errors import ConfigurationError


def _settings() -> FinbotSettings:
    return FinbotSettings(_env_file=None)


def test_all_keys_present(full_env):
    settings = _settings()
    assert check_environment(settings) == []
    allow_list = validate_startup(settings)
    assert "1234@g.us" in allow_list
    assert "5511999999999@s.whatsapp.net" in allow_list
    assert len(allow_list) == 2


def test_every_missing_key_is_listed(clean_env):
    settings = _settings()
    assert check_environment(settings) == list(REQUIRED_ENV_VARS)

    with pytest.raises(ConfigurationError) as exc_info:
        validate_startup(settings)
    assert exc_info.value.missing == list(REQUIRED_ENV_VARS)


def test_missing_subset(full_env):
    full_env.delenv("SHEET_ID")
    full_env.setenv("GOOGLE_PRIVATE_KEY", "   ")
    missing = check_environment(_settings())
    assert missing == ["GOOGLE_PRIVATE_KEY", "SHEET_ID"]


def test_blank_allow_list_is_rejected(full_env):
    full_env.setenv("ALLOWED_CHATS", " , ,")
    settings = _settings()
    assert check_environment(settings) == []
    with pytest.raises(ConfigurationError) as exc_info:
        validate_startup(settings)
    assert exc_info.value.missing == []
    assert "ALLOWED_CHATS" in str(exc_info.value)


def test_allow_list_trims_entries(full_env):
    full_env.setenv("ALLOWED_CHATS", " 1234@g.us ,,5555@s.whatsapp.net ")
    allow_list = _settings().allow_list()
    assert set(allow_list) == {"1234@g.us", "5555@s.whatsapp.net"}
    assert allow_list.describe() == [("group", "1234@g.us"), ("contact", "5555@s.whatsapp.net")]


def test_runtime_defaults(full_env):
    settings = _settings()
    assert settings.auth_dir == "auth"
    assert settings.reconnect_delay == 5.0
    assert settings.handler_timeout == 60.0
    assert settings.handler == "finbot.handler:echo"
    assert settings.transport == "finbot.transports.wacli:WacliTransport"


def test_runtime_overrides_from_env(full_env):
    full_env.setenv("FINBOT_RECONNECT_DELAY", "2.5")
    full_env.setenv("FINBOT_AUTH_DIR", "/var/lib/finbot/auth")
    settings = _settings()
    assert settings.reconnect_delay == 2.5
    assert settings.auth_dir == "/var/lib/finbot/auth"
