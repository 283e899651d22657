"""Configuration management for acpsessions.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/acpsessions/ or %PROGRAMDATA%)
- User-level config (~/.config/acpsessions/, ~/.acps/ or %APPDATA%)
- Project-level config ($session_root/.acps/)
- Environment variable overrides (highest priority)

Example usage:
    from acpsessions.config import load_config

    config = load_config(session_root="/path/to/project")
    print(config.persistence.max_text_chars)
"""

from acpsessions.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from acpsessions.config.paths import (
    ConfigLayer,
    get_config_layers,
    get_config_paths,
    get_default_storage_dir,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
    resolve_storage_dir,
)
from acpsessions.config.schema import (
    Config,
    DiffConfig,
    LoggingConfig,
    PersistenceConfig,
    StorageConfig,
    TerminalConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    # Schema types
    "DiffConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "StorageConfig",
    "TerminalConfig",
    # Path utilities
    "ConfigLayer",
    "get_config_layers",
    "get_config_paths",
    "get_default_storage_dir",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
    "resolve_storage_dir",
]
