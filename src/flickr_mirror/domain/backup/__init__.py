"""Backup domain - incremental mirroring of the catalog to disk.

This domain handles:
- Deterministic file placement and naming
- Staleness decisions (mtime vs. remote last-update)
- Conditional, atomic asset retrieval
- Per-run state, hooks and cooperative cancellation
- Scrubbing orphaned files and pruning empty directories
"""

from .context import BackupHooks, BackupRecord, ExpectedFiles, RunContext, RunState
from .engine import BackupResult, backup_item, run_backup
from .exceptions import BackupError, ConfigurationError
from .fetcher import FetchOutcome, FetchResult, fetch_asset
from .placement import normalize_title, resolve_extension, resolve_path, sidecar_path
from .query import build_query, parse_modified_since
from .scrub import ScrubResult, scrub
from .staleness import get_file_mtime, item_changed, needs_fetch, sidecar_stale

__all__ = [
    # Context
    "BackupHooks",
    "BackupRecord",
    "ExpectedFiles",
    "RunContext",
    "RunState",
    # Engine
    "BackupResult",
    "backup_item",
    "run_backup",
    # Exceptions
    "BackupError",
    "ConfigurationError",
    # Fetcher
    "FetchOutcome",
    "FetchResult",
    "fetch_asset",
    # Placement
    "normalize_title",
    "resolve_extension",
    "resolve_path",
    "sidecar_path",
    # Query
    "build_query",
    "parse_modified_since",
    # Scrub
    "ScrubResult",
    "scrub",
    # Staleness
    "get_file_mtime",
    "item_changed",
    "needs_fetch",
    "sidecar_stale",
]
