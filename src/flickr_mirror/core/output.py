"""
Unified output system using Loguru.
Routes user-facing messages to the console and everything to the log file.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console

from .config import LoggingConfig, get_data_dir

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"

_LEVEL_STYLES = {
    "info": None,
    "warning": "yellow",
    "error": "red",
}

_console: Optional[Console] = None


def get_console() -> Console:
    """Shared Rich console for user-facing output."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def get_log_file_path() -> Path:
    """Get the path to the log file."""
    return get_data_dir() / "flickr-mirror.log"


def setup_loguru(config: Optional[LoggingConfig] = None) -> Path:
    """
    Configure loguru with a rotating file sink and an optional stderr sink.

    Args:
        config: Logging configuration (defaults apply when None)

    Returns:
        Path of the log file in use
    """
    config = config or LoggingConfig()
    log_file = Path(config.log_file) if config.log_file else get_log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    logger.remove()

    logger.add(
        log_file,
        rotation=f"{config.max_file_size_mb} MB",
        retention=config.backup_count,
        level=config.level,
        format=LOG_FORMAT,
        enqueue=False,  # Synchronous writes
    )

    if config.console_output:
        logger.add(sys.stderr, level=config.level, format="{level}: {message}")

    logger.info(f"Loguru initialized: {log_file} (level={config.level})")
    return log_file


def log(message: str, level: str = "info") -> None:
    """
    Unified logging: writes to the log file AND prints to the console.

    Use this instead of print() for user-facing messages that should also be logged.

    Args:
        message: User-facing message
        level: Log level (debug, info, warning, error)
    """
    log_func = getattr(logger, level)
    log_func(message)

    if level == "debug":
        return
    get_console().print(message, style=_LEVEL_STYLES.get(level), highlight=False)
