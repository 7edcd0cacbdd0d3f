"""
Configuration management for flickr-mirror
"""

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from flickr_mirror.domain.catalog.models import SizeLabel


@dataclass
class FlickrConfig:
    """Configuration for Flickr API access."""

    api_key: str = ""
    api_secret: str = ""
    auth_token: str = ""
    timeout: int = 30  # Seconds per HTTP request


@dataclass
class BackupConfig:
    """Configuration for the backup pass."""

    photos_root: Optional[str] = None
    scrub_backups: bool = False
    scrub_unvisited: bool = True  # Scrub ids this run did not visit
    force: bool = False
    fetch_original: bool = True
    fetch_video_original: bool = True
    fetch_medium: bool = False
    fetch_medium_640: bool = False
    fetch_square: bool = False
    fetch_site_mp4: bool = False

    def should_fetch(self, label: SizeLabel) -> bool:
        """Whether a size label is enabled for this run."""
        return bool(getattr(self, label.config_key, label.fetch_by_default))


@dataclass
class SidecarConfig:
    """Configuration for metadata sidecar documents."""

    enabled: bool = False
    root: Optional[str] = None  # Defaults to backup.photos_root
    force: bool = False


@dataclass
class EmbedConfig:
    """Configuration for metadata embedded into original images."""

    enabled: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/flickr-mirror/flickr-mirror.log)
    )
    max_file_size_mb: int = 10  # Maximum log file size before rotation
    backup_count: int = 5  # Number of backup files to keep
    console_output: bool = False  # Also output to console (for debugging)


@dataclass
class Config:
    """Main configuration object."""

    flickr: FlickrConfig = field(default_factory=FlickrConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    sidecar: SidecarConfig = field(default_factory=SidecarConfig)
    embed: EmbedConfig = field(default_factory=EmbedConfig)
    search: Dict[str, Any] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "flickr-mirror"
    return Path.home() / ".config" / "flickr-mirror"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Current working directory
    2. XDG_CONFIG_HOME/flickr-mirror (or ~/.config/flickr-mirror)
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "flickr-mirror"
    return Path.home() / ".local" / "share" / "flickr-mirror"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# flickr-mirror Configuration

[flickr]
# Flickr API credentials (FLICKR_API_KEY, FLICKR_API_SECRET and
# FLICKR_AUTH_TOKEN environment variables take precedence)
# api_key = "your-api-key"
# api_secret = "your-api-secret"
# auth_token = "your-auth-token"

# Seconds to wait on each HTTP request
timeout = 30

[backup]
# Root folder for backed up files (required)
# Files are stored as <root>/<YYYY>/<MM>/<DD>/<YYYYMMDD>-<id>-<title><suffix>.<ext>
photos_root = "~/Pictures/flickr"

# Delete local files not accounted for by the run
scrub_backups = false

# When scrubbing, also delete files of items this run did not visit
# (a run with a narrow search filter is scrubbed as if it were a full one)
scrub_unvisited = true

# Re-fetch every file even when it looks up to date
force = false

# Size variants to fetch
fetch_original = true
fetch_video_original = true
fetch_medium = false
fetch_medium_640 = false
fetch_square = false
fetch_site_mp4 = false

[sidecar]
# Write an XML metadata document next to each item
enabled = false

# Root for sidecar documents (defaults to backup.photos_root)
# root = "~/Pictures/flickr-meta"

# Rewrite sidecars even when unchanged
force = false

[embed]
# Write title, description and tags into the original JPEG
enabled = false

[search]
# Any flickr.photos.search parameter except user_id, e.g.
# tags = "cameraphone"
# per_page = 500
#
# Or, on its own, fetch only items modified recently:
# <n>h, <n>d, <n>w, <n>M, <n>y or epoch seconds
# modified_since = "2d"

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/flickr-mirror/flickr-mirror.log)
# log_file = "/path/to/custom/flickr-mirror.log"

# Maximum log file size in MB before rotation
max_file_size_mb = 10

# Number of backup log files to keep
backup_count = 5

# Also output logs to console (useful for debugging)
console_output = false
""".strip()


def _merge(section: Any, data: Dict[str, Any]) -> Any:
    """Return a copy of a config section with known keys from TOML applied."""
    known = {f.name for f in fields(section)}
    unknown = set(data) - known
    if unknown:
        print(f"Warning: ignoring unknown configuration keys: {sorted(unknown)}")
    return replace(section, **{k: v for k, v in data.items() if k in known})


def _expand(path: Optional[str]) -> Optional[str]:
    return str(Path(path).expanduser()) if path else path


def parse_config(toml_data: Dict[str, Any]) -> Config:
    """Build a Config from parsed TOML data."""
    config = Config()

    if "flickr" in toml_data:
        config.flickr = _merge(config.flickr, toml_data["flickr"])

    if "backup" in toml_data:
        config.backup = _merge(config.backup, toml_data["backup"])
        config.backup.photos_root = _expand(config.backup.photos_root)

    if "sidecar" in toml_data:
        config.sidecar = _merge(config.sidecar, toml_data["sidecar"])
        config.sidecar.root = _expand(config.sidecar.root)

    if "embed" in toml_data:
        config.embed = _merge(config.embed, toml_data["embed"])

    if "search" in toml_data:
        config.search = dict(toml_data["search"])

    if "logging" in toml_data:
        config.logging = _merge(config.logging, toml_data["logging"])
        config.logging.level = str(config.logging.level).upper()
        config.logging.log_file = _expand(config.logging.log_file)

    return config


def apply_env_overrides(config: Config) -> Config:
    """Override Flickr credentials with environment variables if present."""
    api_key = os.environ.get("FLICKR_API_KEY")
    api_secret = os.environ.get("FLICKR_API_SECRET")
    auth_token = os.environ.get("FLICKR_AUTH_TOKEN")

    if api_key:
        config.flickr.api_key = api_key
    if api_secret:
        config.flickr.api_secret = api_secret
    if auth_token:
        config.flickr.auth_token = auth_token

    return config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - FLICKR_API_KEY
    - FLICKR_API_SECRET
    - FLICKR_AUTH_TOKEN
    """
    # Load .env file from config directory if it exists
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = Path(config_path) if config_path else get_config_path()

    if not config_path.exists():
        # Create config directory and default file
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        print(f"Created default configuration at: {config_path}")
        return apply_env_overrides(Config())

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Error loading configuration from {config_path}: {e}")
        print("Using default configuration.")
        return apply_env_overrides(Config())

    return apply_env_overrides(parse_config(toml_data))
