"""Where configuration and conversation files live.

Config layers, lowest priority first:
- system: ``/etc/acpsessions/`` or ``%PROGRAMDATA%\\acpsessions\\``
- user: ``$XDG_CONFIG_HOME/acpsessions/``, ``~/.config/acpsessions/``,
  ``~/.acps/`` or ``%APPDATA%\\acpsessions\\``
- project: ``<session root>/.acps/``
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import NamedTuple

CONFIG_FILENAME = "config.yaml"
APP_NAME = "acpsessions"
PROJECT_DIR = ".acps"
CONVERSATIONS_DIR = "conversations"


class ConfigLayer(NamedTuple):
    name: str
    path: Path


def _windows_dir(variable: str) -> Path | None:
    base = os.environ.get(variable)
    return Path(base) / APP_NAME if base else None


def get_system_config_path() -> Path | None:
    if sys.platform == "win32":
        directory = _windows_dir("PROGRAMDATA")
        return directory / CONFIG_FILENAME if directory else None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path | None:
    if sys.platform == "win32":
        directory = _windows_dir("APPDATA")
        return directory / CONFIG_FILENAME if directory else None

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME

    home = Path.home()
    if (home / ".config").exists():
        return home / ".config" / APP_NAME / CONFIG_FILENAME
    return home / PROJECT_DIR / CONFIG_FILENAME


def get_project_config_path(session_root: str) -> Path:
    return Path(session_root) / PROJECT_DIR / CONFIG_FILENAME


def get_config_layers(session_root: str | None = None) -> list[ConfigLayer]:
    """Named config locations, lowest priority first. Files may not exist."""
    candidates = [
        ("system", get_system_config_path()),
        ("user", get_user_config_path()),
        ("project", get_project_config_path(session_root) if session_root else None),
    ]
    return [ConfigLayer(name, path) for name, path in candidates if path is not None]


def get_config_paths(session_root: str | None = None) -> list[Path]:
    """Config file paths in merge order (system, user, project)."""
    return [layer.path for layer in get_config_layers(session_root)]


def get_default_storage_dir(cwd: str | None = None) -> Path:
    """Directory holding YAML conversation files when none is configured."""
    return Path(cwd or os.getcwd()) / PROJECT_DIR / CONVERSATIONS_DIR


def resolve_storage_dir(directory: str | None, session_root: str | None = None) -> Path:
    """Conversation directory for a configured ``storage.directory``.

    ``~`` is expanded and relative paths are taken from ``session_root``.
    Without a configured directory the project default is used.
    """
    if not directory:
        return get_default_storage_dir(session_root)
    path = Path(directory).expanduser()
    if not path.is_absolute():
        path = Path(session_root or os.getcwd()) / path
    return path
