"""
tests/test_config.py -- Unit tests for core.config.Settings validation.

Settings is constructed directly (not via the cached get_settings()) with
_env_file=None so a developer's local .env never leaks into the result.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import PLACEHOLDER_SECRET, Settings

GOOD_KEY = "k" * 32


@pytest.fixture
def prod_env(monkeypatch):
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.delenv("SECRET_KEY", raising=False)
    return monkeypatch


def test_dev_mode_generates_key(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.delenv("SECRET_KEY", raising=False)
    first = Settings(_env_file=None)
    second = Settings(_env_file=None)
    assert len(first.secret_key) >= 32
    assert first.secret_key != second.secret_key


def test_production_requires_key(prod_env):
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(_env_file=None)


def test_production_rejects_placeholder(prod_env):
    prod_env.setenv("SECRET_KEY", PLACEHOLDER_SECRET)
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(_env_file=None)


def test_short_key_rejected_in_any_mode(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("SECRET_KEY", "short")
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(_env_file=None)


def test_production_accepts_long_key(prod_env):
    prod_env.setenv("SECRET_KEY", GOOD_KEY)
    settings = Settings(_env_file=None)
    assert settings.secret_key == GOOD_KEY
    assert settings.session_expire_seconds == 24 * 60 * 60
    assert settings.invite_expire_seconds == 7 * 24 * 60 * 60
    assert settings.login_rate_limit == "10/minute"


@pytest.mark.parametrize("name", ["SESSION_EXPIRE_SECONDS", "INVITE_EXPIRE_SECONDS"])
def test_non_positive_durations_rejected(prod_env, name):
    prod_env.setenv("SECRET_KEY", GOOD_KEY)
    prod_env.setenv(name, "0")
    with pytest.raises(ValidationError, match=name):
        Settings(_env_file=None)


def test_allowed_hosts_from_json(prod_env):
    prod_env.setenv("SECRET_KEY", GOOD_KEY)
    prod_env.setenv("ALLOWED_HOSTS", '["overtime.example.com"]')
    assert Settings(_env_file=None).allowed_hosts == ["overtime.example.com"]
