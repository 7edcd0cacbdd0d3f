"""Backup-specific exceptions for error handling."""


class BackupError(Exception):
    """Base exception for backup runs."""

    pass


class ConfigurationError(BackupError):
    """Raised when the run configuration is missing or invalid."""

    pass
