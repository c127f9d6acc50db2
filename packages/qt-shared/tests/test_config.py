"""Tests for configuration module."""

import pytest
from qt_shared.config import VerifierSettings, get_settings


def test_settings_defaults():
    """Test that settings have sensible defaults."""
    settings = VerifierSettings()
    assert settings.control_database == ":memory:"
    assert settings.test_database == ":memory:"
    assert settings.relative_error_margin == 1e-4
    assert settings.absolute_error_margin == 1e-12
    assert settings.max_determinism_analysis_runs == 2
    assert settings.run_determinism_analysis is True
    assert settings.enable_limit_analysis is True


def test_env_prefix_overrides(monkeypatch):
    """Test that QT_VERIFIER_ variables override defaults."""
    monkeypatch.setenv("QT_VERIFIER_MAX_DETERMINISM_ANALYSIS_RUNS", "5")
    monkeypatch.setenv("QT_VERIFIER_ENABLE_LIMIT_ANALYSIS", "false")
    monkeypatch.setenv("QT_VERIFIER_TEST_ID", "nightly")

    settings = VerifierSettings()
    assert settings.max_determinism_analysis_runs == 5
    assert settings.enable_limit_analysis is False
    assert settings.test_id == "nightly"


def test_init_kwargs_win_over_env(monkeypatch):
    monkeypatch.setenv("QT_VERIFIER_CONTROL_DATABASE", "from_env.duckdb")
    settings = VerifierSettings(control_database="from_cli.duckdb")
    assert settings.control_database == "from_cli.duckdb"


def test_has_timeouts_property():
    """Test has_timeouts property."""
    settings = VerifierSettings()
    assert settings.has_timeouts is False

    settings = VerifierSettings(test_timeout_seconds=30)
    assert settings.has_timeouts is True


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_invalid_value_rejected(monkeypatch):
    monkeypatch.setenv("QT_VERIFIER_RETRY_MAX_ATTEMPTS", "many")
    with pytest.raises(ValueError):
        VerifierSettings()
