"""
tests/test_config.py -- Unit tests for core/config.py.

Settings are constructed directly with _env_file=None so a developer's .env
never leaks into the assertions.
"""

from __future__ import annotations

import pytest

from core.config import Settings


def test_debug_mode_generates_secret_key() -> None:
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValueError, match="SECRET_KEY is required"):
        Settings(_env_file=None, debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32 characters"):
        Settings(_env_file=None, debug=True, secret_key="too-short")


def test_non_positive_kdf_rounds_rejected() -> None:
    with pytest.raises(ValueError, match="KDF_ROUNDS"):
        Settings(_env_file=None, debug=True, kdf_rounds=0)


def test_default_guest_account_and_role() -> None:
    settings = Settings(_env_file=None, debug=True)
    assert settings.guest_bootstrap_enabled is True
    assert settings.guest_username == "guest"
    assert settings.guest_password == "letmein"
    assert settings.principal_role == "editor"
    assert settings.session_max_age_seconds == 86400


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GUEST_BOOTSTRAP_ENABLED", "false")
    monkeypatch.setenv("SESSION_COOKIE_NAME", "sid")
    settings = Settings(_env_file=None, debug=True)
    assert settings.guest_bootstrap_enabled is False
    assert settings.session_cookie_name == "sid"
