"""Tests for settings file I/O and typed engine settings."""

import json

import fmail_lens.io.settings as settings
from fmail_lens.io.settings import EngineSettings, load_engine_settings


def test_config_path_respects_xdg(tmp_path):
    assert settings.get_config_path() == tmp_path / "config" / "fmail-lens" / "settings.json"


def test_missing_and_corrupt_files_load_as_empty():
    assert settings.load_settings() == {}
    path = settings.get_config_path()
    path.parent.mkdir(parents=True)
    path.write_text("[1, 2]", encoding="utf-8")
    assert settings.load_settings() == {}
    path.write_text("{broken", encoding="utf-8")
    assert settings.load_settings() == {}


def test_save_setting_merges_and_leaves_no_temp_files():
    settings.save_setting("page_size", 50)
    settings.save_setting("other_tool_key", True)
    path = settings.get_config_path()
    assert json.loads(path.read_text(encoding="utf-8")) == {"page_size": 50, "other_tool_key": True}
    assert settings.load_setting("page_size") == 50
    assert settings.load_setting("absent", "dflt") == "dflt"
    assert [p.name for p in path.parent.iterdir()] == ["settings.json"]


def test_engine_settings_defaults():
    assert load_engine_settings() == EngineSettings()


def test_engine_settings_coerce_and_reject_bad_values(caplog):
    loaded = load_engine_settings(
        {"page_size": "25", "graph_max_nodes": "lots", "tick_seconds": -1, "unknown": 1}
    )
    assert loaded.page_size == 25
    assert loaded.graph_max_nodes == 12
    assert loaded.tick_seconds == 1.0
    assert "ignoring invalid setting graph_max_nodes" in caplog.text
    assert "ignoring non-positive setting tick_seconds" in caplog.text


def test_environment_overrides_file(monkeypatch):
    settings.save_settings({"self_agent": "from-file", "state_path": "/tmp/a.json"})
    monkeypatch.setenv("FMAIL_LENS_SELF_AGENT", "from-env")
    loaded = load_engine_settings()
    assert loaded.self_agent == "from-env"
    assert loaded.state_path == "/tmp/a.json"
