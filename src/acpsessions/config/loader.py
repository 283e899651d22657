"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from acpsessions.config.merge import merge_configs
from acpsessions.config.paths import get_config_layers
from acpsessions.config.schema import (
    Config,
    DiffConfig,
    LoggingConfig,
    PersistenceConfig,
    StorageConfig,
    TerminalConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("acpsessions.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_KNOWN_SECTIONS = {"logging", "persistence", "diff", "terminal", "storage"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("ACPS_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    storage_dir = os.environ.get("ACPS_STORAGE_DIR")
    if storage_dir:
        overrides.setdefault("storage", {})["directory"] = storage_dir

    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _int(section: dict[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        _log.warning("Ignoring non-integer config value %s=%r", key, value)
        return default


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=_int(log_data, "verbose", 2) if "verbose" in log_data else None,
        file=log_data.get("file"),
    )

    defaults = PersistenceConfig()
    p = _section(data, "persistence")
    persistence = PersistenceConfig(
        enabled=bool(p.get("enabled", defaults.enabled)),
        max_blocks=_int(p, "max_blocks", defaults.max_blocks),
        max_text_chars=_int(p, "max_text_chars", defaults.max_text_chars),
        max_resource_chars=_int(p, "max_resource_chars", defaults.max_resource_chars),
        max_message_chars=_int(p, "max_message_chars", defaults.max_message_chars),
        max_tool_input_chars=_int(p, "max_tool_input_chars", defaults.max_tool_input_chars),
        max_terminal_lines=_int(p, "max_terminal_lines", defaults.max_terminal_lines),
        max_write_attempts=_int(p, "max_write_attempts", defaults.max_write_attempts),
        conversation_title=str(p.get("conversation_title", defaults.conversation_title)),
    )

    d = _section(data, "diff")
    diff_defaults = DiffConfig()
    diff = DiffConfig(
        context_lines=_int(d, "context_lines", diff_defaults.context_lines),
        max_preview_lines=_int(d, "max_preview_lines", diff_defaults.max_preview_lines),
        max_source_lines=_int(d, "max_source_lines", diff_defaults.max_source_lines),
    )

    t = _section(data, "terminal")
    terminal_defaults = TerminalConfig()
    terminal = TerminalConfig(
        live_lines=_int(t, "live_lines", terminal_defaults.live_lines),
        slack_lines=_int(t, "slack_lines", terminal_defaults.slack_lines),
    )

    storage = StorageConfig(directory=_section(data, "storage").get("directory"))

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(
        logging=logging_config,
        persistence=persistence,
        diff=diff,
        terminal=terminal,
        storage=storage,
        extra=extra,
    )


def load_config(session_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($session_root/.acps/config.yaml)
    3. User config
    4. System config

    Args:
        session_root: Project directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and session_root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for name, path in get_config_layers(session_root):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded %s config from %s", name, path)
            layers.append(layer)

    env_layer = env_overrides()
    if env_layer:
        layers.append(env_layer)

    config = dict_to_config(merge_configs(*layers))

    # Cache only global config (no session_root)
    if session_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config."""
    global _cached_config
    _cached_config = None


def reload_config(session_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(session_root=session_root, reload=True)

    for callback in _reload_callbacks:
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a reload callback; returns a function that unregisters it."""
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
