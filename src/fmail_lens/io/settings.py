"""Settings file I/O for fmail-lens.

Manages a JSON settings file at XDG_CONFIG_HOME/fmail-lens/settings.json.
Engine tunables are read through load_engine_settings(); other keys are
left alone so the file can be shared with other tools' settings.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULTS = {
    "self_agent": "",
    "graph_max_nodes": 12,
    "graph_max_topics": 10,
    "live_tail_max_messages": 2000,
    "view_max_messages": 20000,
    "page_size": 200,
    "tick_seconds": 1.0,
    "state_path": "",
}

ENV_OVERRIDES = {
    "self_agent": "FMAIL_LENS_SELF_AGENT",
    "state_path": "FMAIL_LENS_STATE_PATH",
}


def get_config_path() -> Path:
    """Return path to settings file.

    Uses XDG_CONFIG_HOME (default ~/.config) / fmail-lens / settings.json.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "fmail-lens" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(data: dict) -> None:
    """Atomic write of settings dict to JSON file.

    Writes to a temp file in the same directory, then renames over the target.
    """
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_setting(key: str, default=None):
    """Load a single setting by key. Returns default if absent."""
    return load_settings().get(key, default)


def save_setting(key: str, value) -> None:
    """Save a single setting by key (merge into existing settings)."""
    data = load_settings()
    data[key] = value
    save_settings(data)


@dataclass(frozen=True)
class EngineSettings:
    self_agent: str = DEFAULTS["self_agent"]
    graph_max_nodes: int = DEFAULTS["graph_max_nodes"]
    graph_max_topics: int = DEFAULTS["graph_max_topics"]
    live_tail_max_messages: int = DEFAULTS["live_tail_max_messages"]
    view_max_messages: int = DEFAULTS["view_max_messages"]
    page_size: int = DEFAULTS["page_size"]
    tick_seconds: float = DEFAULTS["tick_seconds"]
    state_path: str = DEFAULTS["state_path"]


def _coerce(key: str, value):
    default = DEFAULTS[key]
    try:
        coerced = type(default)(value)
    except (TypeError, ValueError):
        logger.warning("ignoring invalid setting %s=%r", key, value)
        return default
    if isinstance(coerced, (int, float)) and not isinstance(coerced, bool) and coerced <= 0:
        logger.warning("ignoring non-positive setting %s=%r", key, value)
        return default
    return coerced


def load_engine_settings(data: dict | None = None) -> EngineSettings:
    """Typed engine settings: defaults < settings file < environment."""
    data = load_settings() if data is None else data
    values = {key: _coerce(key, data[key]) for key in DEFAULTS if key in data}
    for key, env_name in ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name, "").strip()
        if env_value:
            values[key] = env_value
    return EngineSettings(**values)
