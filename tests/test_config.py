"""Tests for settings, session storage and the desired config loader."""
import pytest

from arc.config.loader import load_desired_config
from arc.config.sessions import SessionStore, default_session_file
from arc.config.settings import ReconcileSettings
from arc.errors import ConfigLoadError


class TestReconcileSettings:
    """Tests for ReconcileSettings."""

    def test_defaults(self):
        settings = ReconcileSettings()
        assert settings.retry_budget == 3
        assert settings.max_attempts == 4
        assert settings.rollback_on_error is True

    def test_negative_retry_budget_rejected(self):
        with pytest.raises(ValueError, match="retry_budget"):
            ReconcileSettings(retry_budget=-1)

    def test_zero_timeout_rejected(self):
        with pytest.raises(ValueError, match="Timeouts"):
            ReconcileSettings(request_timeout=0)

    def test_backoff_bounds(self):
        with pytest.raises(ValueError):
            ReconcileSettings(backoff_min=5, backoff_max=1)

    def test_from_dict_ignores_unknown_keys(self):
        settings = ReconcileSettings.from_dict({"retry_budget": 1, "colour": "red"})
        assert settings.retry_budget == 1

    def test_from_dict_none(self):
        assert ReconcileSettings.from_dict(None) == ReconcileSettings()

    def test_env_overrides(self):
        settings = ReconcileSettings().with_env({
            "ARC_REQUEST_TIMEOUT": "2.5",
            "ARC_RETRY_BUDGET": "0",
            "ARC_ROLLBACK": "no",
            "ARC_MAX_CONCURRENCY": "",
        })
        assert settings.request_timeout == 2.5
        assert settings.retry_budget == 0
        assert settings.rollback_on_error is False
        assert settings.max_concurrency == 8

    def test_env_override_of_integer_valued_float(self):
        """Timeouts written as whole numbers still accept fractional overrides."""
        settings = ReconcileSettings.from_dict({"request_timeout": 20})
        assert settings.with_env({"ARC_REQUEST_TIMEOUT": "0.5"}).request_timeout == 0.5

    def test_env_without_overrides_returns_same(self):
        settings = ReconcileSettings()
        assert settings.with_env({}) is settings


class TestSessionStore:
    """Tests for persisted session cookies."""

    def test_save_and_load(self, tmp_path):
        store = SessionStore(tmp_path / "sessions.json")
        store.save("core-1", "sessionId=abc")
        assert store.load("core-1") == "sessionId=abc"
        assert SessionStore(tmp_path / "sessions.json").load("core-1") == "sessionId=abc"

    def test_load_missing(self, tmp_path):
        assert SessionStore(tmp_path / "sessions.json").load("core-1") is None

    def test_forget(self, tmp_path):
        store = SessionStore(tmp_path / "sessions.json")
        store.save("core-1", "sessionId=abc")
        store.save("core-2", "sessionId=def")
        store.forget("core-1")
        assert store.load("core-1") is None
        assert store.load("core-2") == "sessionId=def"

    def test_unreadable_file_ignored(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{not json")
        assert SessionStore(path).load("core-1") is None

    def test_file_is_private(self, tmp_path):
        path = tmp_path / "nested" / "sessions.json"
        SessionStore(path).save("core-1", "sessionId=abc")
        assert path.stat().st_mode & 0o777 == 0o600

    def test_default_path_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ARC_SESSION_FILE", str(tmp_path / "s.json"))
        assert default_session_file() == tmp_path / "s.json"
        assert SessionStore().path == tmp_path / "s.json"


class TestLoadDesiredConfig:
    """Tests for the desired config loader."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "desired.yaml"
        path.write_text("mode: full\nvlans:\n  10:\n    name: Users\n")
        assert load_desired_config(path) == {"mode": "full", "vlans": {10: {"name": "Users"}}}

    def test_json(self, tmp_path):
        path = tmp_path / "desired.json"
        path.write_text('{"vlans": {"10": {"name": "Users"}}}')
        assert load_desired_config(str(path)) == {"vlans": {"10": {"name": "Users"}}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "desired.yaml"
        path.write_text("")
        assert load_desired_config(path) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="Cannot read"):
            load_desired_config(tmp_path / "missing.yaml")

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "desired.yaml"
        path.write_text("vlans: [10\n")
        with pytest.raises(ConfigLoadError, match="Cannot parse"):
            load_desired_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "desired.yaml"
        path.write_text("- 10\n- 20\n")
        with pytest.raises(ConfigLoadError, match="must be a mapping, got list"):
            load_desired_config(path)
