"""
Unit tests for configuration loading.
"""

import pytest

from cardsync.config.config_loader import AppConfig, DEFAULTS
from cardsync.core.exceptions import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of these tests."""
    for name in (
        "DROPBOX_ACCESS_TOKEN", "CARDSYNC_REMOTE_BACKEND", "CARDSYNC_REMOTE_PATH",
        "CARDSYNC_TIMEOUT", "CARDSYNC_STATE_BACKEND", "CARDSYNC_STATE_DB",
        "CARDSYNC_TYPING_GUARD", "CARDSYNC_DEBOUNCE", "CARDSYNC_POLL_INTERVAL",
        "CARDSYNC_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_defaults(self):
        config = AppConfig(load_env_file=False)

        assert config.get("remote.path") == "/smartcards.json"
        assert config.get("remote.attachments_folder") == "/attachments"
        assert config.get("remote.timeout") == 30.0
        assert config.get("remote.access_token") is None

    def test_typed_sections(self):
        config = AppConfig(load_env_file=False)

        engine = config.get_engine_config()
        scheduler = config.get_scheduler_config()
        assert engine.typing_guard_seconds == 15.0
        assert engine.app_version == DEFAULTS["engine"]["app_version"]
        assert scheduler.debounce_seconds == 3.0
        assert scheduler.poll_interval_seconds == 30.0

    def test_defaults_not_shared(self):
        config = AppConfig(load_env_file=False)
        config.set("remote.path", "/other.json")
        assert DEFAULTS["remote"]["path"] == "/smartcards.json"

    def test_get_default_for_missing_key(self):
        config = AppConfig(load_env_file=False)
        assert config.get("nope.nothing", "fallback") == "fallback"
        assert config.get("remote.path.deeper", "fallback") == "fallback"


class TestYamlFile:

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "remote:\n"
            "  path: /team/cards.json\n"
            "scheduler:\n"
            "  poll_interval_seconds: 10\n",
            encoding="utf-8",
        )

        config = AppConfig(path, load_env_file=False)

        assert config.get("remote.path") == "/team/cards.json"
        assert config.get("remote.timeout") == 30.0
        assert config.get_scheduler_config().poll_interval_seconds == 10.0

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert AppConfig(path, load_env_file=False).get("remote.backend") == "dropbox"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            AppConfig(tmp_path / "missing.yaml", load_env_file=False)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("remote: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            AppConfig(path, load_env_file=False)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            AppConfig(path, load_env_file=False)

    def test_negative_interval_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("scheduler:\n  debounce_seconds: -1\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            AppConfig(path, load_env_file=False)


class TestEnvironment:

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("remote:\n  path: /from-file.json\n", encoding="utf-8")
        monkeypatch.setenv("CARDSYNC_REMOTE_PATH", "/from-env.json")
        monkeypatch.setenv("DROPBOX_ACCESS_TOKEN", "sl.token")
        monkeypatch.setenv("CARDSYNC_POLL_INTERVAL", "45")

        config = AppConfig(path, load_env_file=False)

        assert config.get("remote.path") == "/from-env.json"
        assert config.get("remote.access_token") == "sl.token"
        assert config.get_scheduler_config().poll_interval_seconds == 45.0

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("CARDSYNC_DEBOUNCE", "soon")

        with pytest.raises(ConfigError):
            AppConfig(load_env_file=False)

    def test_dotenv_file(self, tmp_path, monkeypatch):
        # Registers cleanup for the variable load_dotenv sets
        monkeypatch.setenv("CARDSYNC_STATE_BACKEND", "unset")
        monkeypatch.delenv("CARDSYNC_STATE_BACKEND")
        (tmp_path / ".env").write_text("CARDSYNC_STATE_BACKEND=memory\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)

        config = AppConfig()
        assert config.get("state.backend") == "memory"
