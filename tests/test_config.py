"""Tests for configuration and the application config file."""
import json
from pathlib import Path

import pytest

from jotnotes.config import AppConfig, JotConfig, load_app_config, save_app_config
from jotnotes.exceptions import ConfigurationError


class TestAppConfigFile:
    """Tests for load_app_config / save_app_config."""

    def test_missing_file(self, tmp_path):
        assert load_app_config(tmp_path / "none.json").notes_root_path is None

    def test_load(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"notesRootPath": "/data/notes", "theme": "dark"}), encoding="utf-8")
        assert load_app_config(path).notes_root_path == "/data/notes"

    def test_null_root(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"notesRootPath": null}', encoding="utf-8")
        assert load_app_config(path).notes_root_path is None

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", ""])
    def test_malformed_file(self, tmp_path, text):
        path = tmp_path / "config.json"
        path.write_text(text, encoding="utf-8")
        assert load_app_config(path) == AppConfig()

    def test_save_creates_parent_and_indents(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        save_app_config(AppConfig(notes_root_path="/data/notes"), path)
        text = path.read_text(encoding="utf-8")
        assert json.loads(text) == {"notesRootPath": "/data/notes"}
        assert '\n  "notesRootPath"' in text

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "config.json"
        save_app_config(AppConfig(notesRootPath="/x"), path)
        assert load_app_config(path).notes_root_path == "/x"


class TestJotConfig:
    """Tests for runtime settings."""

    def test_env_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("JOT_NOTES_ROOT", str(tmp_path))
        monkeypatch.setenv("JOT_DEBOUNCE_SECONDS", "0.25")
        monkeypatch.setenv("JOT_FLUSH_WORKERS", "8")
        cfg = JotConfig()
        assert cfg.notes_root == tmp_path
        assert cfg.debounce_seconds == 0.25
        assert cfg.flush_workers == 8

    def test_builtin_defaults(self, monkeypatch):
        for var in ("JOT_NOTES_ROOT", "JOT_DEBOUNCE_SECONDS", "JOT_FLUSH_WORKERS", "JOT_LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        cfg = JotConfig()
        assert cfg.notes_root is None
        assert cfg.debounce_seconds == 0.8
        assert cfg.flush_workers == 4
        assert cfg.log_level == "INFO"

    def test_negative_debounce_rejected(self):
        with pytest.raises(ValueError):
            JotConfig(debounce_seconds=-1)

    def test_zero_workers_rejected(self):
        with pytest.raises(ValueError):
            JotConfig(flush_workers=0)

    def test_explicit_root_wins(self, tmp_path):
        app = tmp_path / "config.json"
        save_app_config(AppConfig(notes_root_path="/from/file"), app)
        cfg = JotConfig(notes_root=tmp_path / "explicit", app_config_path=app)
        assert cfg.resolve_notes_root() == tmp_path / "explicit"

    def test_root_from_app_config(self, tmp_path):
        app = tmp_path / "config.json"
        save_app_config(AppConfig(notes_root_path="/from/file"), app)
        cfg = JotConfig(notes_root=None, app_config_path=app)
        assert cfg.resolve_notes_root() == Path("/from/file")

    def test_require_root_raises(self, tmp_path):
        cfg = JotConfig(notes_root=None, app_config_path=tmp_path / "none.json")
        assert cfg.resolve_notes_root() is None
        with pytest.raises(ConfigurationError):
            cfg.require_notes_root()
