"""
Tests for settings loading.
"""

from datetime import timedelta

import pytest

from fraudguard.auth import ConfigurationError, ConflictPolicy, SessionSettings, load_settings


class TestDefaults:
    """Test default values."""

    def test_defaults(self, monkeypatch):
        """Defaults match the portal's session policy."""
        for name in ("INACTIVITY_TIMEOUT_SECONDS", "WARNING_SECONDS", "SESSION_TTL_SECONDS", "CONFLICT_POLICY"):
            monkeypatch.delenv(f"FRAUDGUARD_{name}", raising=False)

        settings = load_settings()

        assert settings.inactivity_timeout == timedelta(minutes=30)
        assert settings.warning_threshold == timedelta(minutes=5)
        assert settings.session_ttl == timedelta(hours=8)
        assert settings.session_ttl > settings.inactivity_timeout
        assert settings.warning_retry == timedelta(seconds=30)
        assert settings.remember_me_ttl == timedelta(days=30)
        assert settings.conflict_policy is ConflictPolicy.TERMINATE_EXISTING
        assert settings.store_path is None


class TestEnvironment:
    """Test environment overrides."""

    def test_env_prefix(self, monkeypatch):
        """FRAUDGUARD_* variables override defaults."""
        monkeypatch.setenv("FRAUDGUARD_WARNING_SECONDS", "120")
        monkeypatch.setenv("FRAUDGUARD_CONFLICT_POLICY", "reject_new")

        settings = SessionSettings()

        assert settings.warning_threshold == timedelta(minutes=2)
        assert settings.conflict_policy is ConflictPolicy.REJECT_NEW


class TestValidation:
    """Test rejected configurations."""

    def test_warning_longer_than_timeout(self):
        """The warning must fit inside the inactivity window."""
        with pytest.raises(ConfigurationError):
            load_settings(inactivity_timeout_seconds=60, warning_seconds=60)

    def test_non_positive_duration(self):
        """Durations must be positive."""
        with pytest.raises(ConfigurationError):
            load_settings(session_ttl_seconds=0)

    def test_zero_retry_attempts(self):
        """At least one store attempt is required."""
        with pytest.raises(ConfigurationError):
            load_settings(store_retry_attempts=0)

    def test_unknown_policy(self):
        """Conflict policy must be a known value."""
        with pytest.raises(ConfigurationError):
            load_settings(conflict_policy="first_come")
