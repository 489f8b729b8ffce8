"""User configuration read from `$XDG_CONFIG_HOME/taskcheck/config.toml`.

Recognised keys::

    [catalog]
    path = "~/work/taskcheck.toml"

    [smoke]
    filter = "missing-test"
    timeout = 4.0

    [log]
    level = "INFO"

The typed accessors return None for an unset key so callers keep their own
defaults. A key holding a value of the wrong type raises `ConfigError`.
"""

from __future__ import annotations

import os
from pathlib import Path
import tomllib
from typing import Any

CONFIG_PATH_ENV = "TASKCHECK_CONFIG_PATH"

_cache: dict[str, Any] | None = None


class ConfigError(ValueError):
    pass


def config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "taskcheck" / "config.toml"


def load_config(path: Path | None = None) -> dict[str, Any]:
    path = config_path() if path is None else path
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise ConfigError(f"Invalid config file: {path}") from exc
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid config file: {path}: {exc}") from exc


def get_config() -> dict[str, Any]:
    global _cache
    if _cache is None:
        _cache = load_config()
    return _cache


def reset_config_cache() -> None:
    global _cache
    _cache = None


def get_config_value(*keys: str, default: Any = None) -> Any:
    node: Any = get_config()
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def _string(section: str, key: str) -> str | None:
    value = get_config_value(section, key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{section}.{key} must be a non-empty string in {config_path()}, got {value!r}")
    return value


def catalog_file() -> Path | None:
    """`catalog.path`, with `~` expanded."""
    value = _string("catalog", "path")
    return Path(value).expanduser() if value is not None else None


def smoke_filter() -> str | None:
    return _string("smoke", "filter")


def smoke_timeout() -> float | None:
    """`smoke.timeout` in seconds; zero or negative budgets are rejected."""
    value = get_config_value("smoke", "timeout")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"smoke.timeout must be a positive number of seconds in {config_path()}, got {value!r}")
    return float(value)


def log_level() -> str | None:
    return _string("log", "level")
