"""Configuration and settings helpers, safe to import from anywhere.

Call init(data_dir) once at startup before accessing any paths.
"""

import json
import os
from pathlib import Path
from typing import Any


DEFAULT_DATA_DIR = Path(os.path.expanduser("~/.local/share/termdeck"))

_data_dir: Path | None = None


def init(data_dir: Path) -> None:
    """Set the data directory. Must be called before any other config access."""
    global _data_dir
    _data_dir = Path(data_dir)


def data_dir() -> Path:
    """Get the data directory. Raises if init() hasn't been called."""
    if _data_dir is None:
        raise RuntimeError("config.init() not called")
    return _data_dir


def default_data_dir() -> Path:
    """Data directory used when none is given: $TERMDECK_DATA_DIR or ~/.local/share/termdeck."""
    env = os.environ.get("TERMDECK_DATA_DIR")
    if env:
        return Path(env).expanduser().resolve()
    return DEFAULT_DATA_DIR


def ensure_dirs() -> None:
    """Ensure all required directories exist."""
    dd = data_dir()
    dd.mkdir(parents=True, exist_ok=True)
    (dd / "logs").mkdir(parents=True, exist_ok=True)


def snapshot_file() -> Path:
    """Where the CLI host writes the latest agent snapshot."""
    return data_dir() / "agents.json"


# Settings: read from data dir, cached with mtime check
_settings_cache: dict[str, Any] | None = None
_settings_mtime: float = 0.0

_SETTINGS_DEFAULTS: dict[str, Any] = {
    # Shell used when $SHELL is unset
    "shell": "/bin/bash",
    # Seconds without matching output before a session's agents go inactive
    "idle_window": 10.0,
    # Initial pty geometry
    "cols": 120,
    "rows": 30,
    "term": "xterm-256color",
    # Extra PATH entries, searched after the built-in tool locations
    "extra_path": [],
    "session_env_var": "TERMDECK_SESSION_ID",
    "log_level": "INFO",
}


def get_settings() -> dict[str, Any]:
    """Load settings.json from the data dir, with mtime caching and defaults."""
    global _settings_cache, _settings_mtime
    settings_file = data_dir() / "settings.json"
    try:
        mtime = settings_file.stat().st_mtime
    except OSError:
        mtime = 0.0
    if _settings_cache is None or mtime != _settings_mtime:
        settings = dict(_SETTINGS_DEFAULTS)
        if settings_file.exists():
            try:
                loaded = json.loads(settings_file.read_text())
                settings.update(loaded)
            except (OSError, json.JSONDecodeError):
                pass
        _settings_cache = settings
        _settings_mtime = mtime
    return _settings_cache


def get_setting(key: str) -> Any:
    """Single settings value (falls back to the built-in default)."""
    return get_settings().get(key, _SETTINGS_DEFAULTS.get(key))
