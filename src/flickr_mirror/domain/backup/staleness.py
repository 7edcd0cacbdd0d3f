"""
Staleness decisions for size variants, items and sidecars.

Pure functions; callers supply file mtimes (None when the file is missing),
the remote last-modified timestamp, the run's watermark and the force flag.
"""

import os
from pathlib import Path
from typing import Optional


def get_file_mtime(file_path: Path) -> Optional[float]:
    """Get file modification time as Unix timestamp with sub-second precision.

    Args:
        file_path: Path to the file

    Returns:
        Unix timestamp (float) or None if the file doesn't exist or is empty
    """
    try:
        stat = os.stat(file_path)
    except OSError:
        return None
    if stat.st_size == 0:
        return None
    return stat.st_mtime


def needs_fetch(
    local_mtime: Optional[float], remote_lastmod: Optional[int], force: bool
) -> bool:
    """Decide whether a size variant must be (conditionally) retrieved.

    Missing file => fetch. Force => fetch. Local copy at least as new as the
    remote last-modified time => skip. Anything else => fetch.
    """
    if local_mtime is None:
        return True
    if force:
        return True
    if remote_lastmod is not None and local_mtime >= remote_lastmod:
        return False
    return True


def item_changed(
    written_count: int,
    remote_lastmod: Optional[int],
    watermark: Optional[int],
    force: bool,
) -> bool:
    """Item-level change flag.

    An item changed when at least one variant was written this run. Without
    a write (and without force) it still counts as changed when its remote
    last-modified time is at or past the run's watermark; the page-level
    query window is coarser than per-file timestamps.
    """
    if written_count > 0:
        return True
    if force:
        return False
    return bool(watermark) and remote_lastmod is not None and remote_lastmod >= watermark


def sidecar_stale(
    sidecar_mtime: Optional[float],
    changed: bool,
    watermark: Optional[int],
    force: bool = False,
) -> bool:
    """Decide whether the item's metadata sidecar must be rewritten.

    Stale when absent, or when the item changed and the sidecar predates the
    watermark. Runs without a watermark rewrite the sidecar of every changed
    item.
    """
    if force or sidecar_mtime is None:
        return True
    if not changed:
        return False
    if not watermark:
        return True
    return sidecar_mtime < watermark
