"""
Tests for environment-driven configuration.
"""

import pytest

from homeledger.config import AppSettings, RecurringSettings, get_settings, validate_all_settings


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch, tmp_path):
    # no stray .env from the working directory
    monkeypatch.chdir(tmp_path)
    for name in ("FIREBASE_CREDENTIALS_PATH", "RECURRING_MAX_OCCURRENCES_PER_RUN", "DEFAULT_CURRENCY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Defaults and environment overrides."""

    def test_defaults(self):
        settings = get_settings()

        assert settings.app.default_currency == "USD"
        assert settings.app.transactions_page_size == 100
        assert settings.recurring.max_occurrences_per_run == 1
        assert settings.recurring.system_user_id == "system:recurring"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_CURRENCY", "inr")
        monkeypatch.setenv("RECURRING_MAX_OCCURRENCES_PER_RUN", "12")

        assert AppSettings().default_currency == "INR"
        assert RecurringSettings().max_occurrences_per_run == 12

    def test_catch_up_bounded(self, monkeypatch):
        monkeypatch.setenv("RECURRING_MAX_OCCURRENCES_PER_RUN", "0")

        with pytest.raises(ValueError):
            RecurringSettings()


class TestValidateAllSettings:
    """Startup checks report every group."""

    def test_missing_credentials_reported(self):
        results = validate_all_settings()

        assert results["recurring"] is True
        assert results["app"] is True
        assert results["firebase"] is False
        assert "credentials_path" in results["firebase_error"]

    def test_credentials_configured(self, monkeypatch, tmp_path):
        credentials = tmp_path / "service-account.json"
        credentials.write_text("{}")
        monkeypatch.setenv("FIREBASE_CREDENTIALS_PATH", str(credentials))

        assert validate_all_settings()["firebase"] is True

    def test_missing_credentials_file_warns(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FIREBASE_CREDENTIALS_PATH", str(tmp_path / "absent.json"))

        with pytest.warns(UserWarning, match="not found"):
            assert get_settings().firebase.database_id == "(default)"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
