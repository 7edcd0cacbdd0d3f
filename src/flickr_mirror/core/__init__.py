"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Logging and user-facing output (Loguru + Rich)
"""

# Configuration
from .config import (
    Config,
    BackupConfig,
    EmbedConfig,
    FlickrConfig,
    LoggingConfig,
    SidecarConfig,
    load_config,
    parse_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    create_default_config,
)

# Output
from .output import get_console, log, setup_loguru

__all__ = [
    # Config
    "Config",
    "BackupConfig",
    "EmbedConfig",
    "FlickrConfig",
    "LoggingConfig",
    "SidecarConfig",
    "load_config",
    "parse_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "create_default_config",
    # Output
    "get_console",
    "log",
    "setup_loguru",
]
