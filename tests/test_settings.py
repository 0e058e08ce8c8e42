"""Tests for environment-driven configuration."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from kakeibo.config import (
    AppSettings,
    ScheduleSettings,
    StorageSettings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)


class TestDefaults:
    """Tests for default values."""

    def test_section_defaults(self):
        settings = get_settings()
        assert settings.storage.backend == "file"
        assert settings.storage.namespace == "kakeibo"
        assert settings.sync.remote_max_attempts == 1
        assert settings.sync.replay_on_start
        assert not settings.schedule.clamp_month_end
        assert settings.schedule.upcoming_bill_window_days == 7
        assert settings.app.max_expense_amount == Decimal("1000000")

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()

    def test_app_section_fields(self):
        """The app section only carries validation, audit and bill options."""
        assert set(AppSettings.model_fields) == {
            "max_expense_amount",
            "min_description_length",
            "max_description_length",
            "max_expense_age_years",
            "future_date_tolerance_days",
            "audit_log_max_events",
            "record_expense_on_bill_payment",
        }


class TestEnvironment:
    """Tests for environment overrides and validation."""

    def test_prefixed_overrides(self, monkeypatch):
        """Each section reads its own prefix."""
        monkeypatch.setenv("KAKEIBO_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("KAKEIBO_SCHEDULE_CLAMP_MONTH_END", "true")
        monkeypatch.setenv("KAKEIBO_SYNC_REMOTE_MAX_ATTEMPTS", "4")

        assert StorageSettings().backend == "memory"
        assert ScheduleSettings().clamp_month_end
        assert SyncSettings().remote_max_attempts == 4

    def test_unknown_backend_rejected(self, monkeypatch):
        monkeypatch.setenv("KAKEIBO_STORAGE_BACKEND", "sqlite")
        with pytest.raises(ValidationError):
            StorageSettings()

    def test_namespace_must_be_simple(self):
        """Namespaces become file names."""
        with pytest.raises(ValidationError):
            StorageSettings(namespace="../etc")

    def test_wait_bounds_checked(self):
        with pytest.raises(ValidationError):
            SyncSettings(retry_wait_min=5, retry_wait_max=1)

    def test_description_limit_capped(self):
        with pytest.raises(ValidationError):
            AppSettings(max_description_length=500)

    def test_validate_all_settings_reports_errors(self, monkeypatch):
        monkeypatch.setenv("KAKEIBO_SYNC_REMOTE_MAX_ATTEMPTS", "0")
        results = validate_all_settings()
        assert results["storage"] is True
        assert results["sync"] is False
        assert "sync_error" in results
