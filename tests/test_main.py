"""Tests for startup validation, exit codes and top-level error reporting."""

import logging
from unittest.mock import MagicMock

import pytest

import finbot.main as finbot_main
from finbot.config import FinbotSettings
from finbot.errors import CredentialStoreError


@pytest.fixture
def settings_for(tmp_path):
    def build():
        return FinbotSettings(_env_file=None, log_file=str(tmp_path / "finbot.log"))
    return build


@pytest.fixture
def fake_run(monkeypatch):
    calls = []

    async def run(settings, allow_list):
        calls.append(allow_list)

    monkeypatch.setattr(finbot_main, "run", run)
    return calls


def test_missing_config_exits_before_connecting(clean_env, settings_for, fake_run, monkeypatch):
    load_transport = MagicMock()
    monkeypatch.setattr(finbot_main, "load_transport", load_transport)

    assert finbot_main.main(settings_for()) == 1
    assert fake_run == []
    load_transport.assert_not_called()


def test_empty_allow_list_exits(full_env, settings_for, fake_run):
    full_env.setenv("ALLOWED_CHATS", ",,")
    assert finbot_main.main(settings_for()) == 1
    assert fake_run == []


def test_valid_config_runs(full_env, settings_for, fake_run):
    assert finbot_main.main(settings_for()) == 0
    assert len(fake_run) == 1
    assert "1234@g.us" in fake_run[0]


def test_fatal_startup_error_exits_1(full_env, settings_for, monkeypatch):
    async def run(settings, allow_list):
        raise CredentialStoreError("corrupt creds.json")

    monkeypatch.setattr(finbot_main, "run", run)
    assert finbot_main.main(settings_for()) == 1


def test_loop_handler_drops_transient_errors(caplog):
    with caplog.at_level(logging.ERROR, logger="finbot"):
        finbot_main._loop_exception_handler(None, {"exception": RuntimeError("Bad MAC"), "message": "x"})
        finbot_main._loop_exception_handler(None, {"message": "Session error: no session"})
    assert caplog.records == []


def test_loop_handler_logs_other_errors(caplog):
    with caplog.at_level(logging.ERROR, logger="finbot"):
        finbot_main._loop_exception_handler(
            None, {"exception": ValueError("boom"), "message": "Task exception was never retrieved"}
        )
    assert any("Task exception was never retrieved" in r.getMessage() for r in caplog.records)


def test_excepthook(caplog):
    with caplog.at_level(logging.CRITICAL, logger="finbot"):
        finbot_main._excepthook(RuntimeError, RuntimeError("failed to decrypt message"), None)
        assert caplog.records == []
        finbot_main._excepthook(ValueError, ValueError("boom"), None)
    assert "ValueError: boom" in caplog.records[0].getMessage()
