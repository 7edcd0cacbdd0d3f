"""
Orphan cleanup after a completed backup pass.

Walks the backup root and deletes canonical files that the run did not
account for, then prunes day/month/year directories left empty.

Items the run never visited (for example because the search filter excluded
them) have no ledger entry, so their files are deleted too: a partial run is
scrubbed as if it were a full one. `scrub_unvisited=False` restricts deletion
to stale names of items that were visited.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AbstractSet, List, Mapping

from loguru import logger

from .placement import item_id_from_filename


@dataclass
class ScrubResult:
    deleted: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    removed_dirs: List[Path] = field(default_factory=list)


def find_orphans(
    root: Path,
    expected: Mapping[str, AbstractSet[str]],
    protected: AbstractSet[str] = frozenset(),
    scrub_unvisited: bool = True,
) -> List[Path]:
    """List canonical files under root that are not in the expected ledger."""
    orphans: List[Path] = []

    for dirpath, _dirnames, filenames in os.walk(root):
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if not path.is_file() or path.is_symlink():
                continue

            item_id = item_id_from_filename(name)
            if item_id is None or item_id in protected:
                continue

            names = expected.get(item_id)
            if names is None:
                if not scrub_unvisited:
                    continue
            elif name in names:
                continue

            logger.info(f"mark {path} for scrubbing")
            orphans.append(path)

    return orphans


def _is_empty_dir(path: Path) -> bool:
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None
    except OSError:
        return False


def prune_empty_parents(path: Path, root: Path) -> List[Path]:
    """Remove the day, month and year directories above `path` while empty.

    Stops at the first non-empty directory and never removes `root`.
    """
    removed: List[Path] = []
    root = Path(root).resolve()
    current = Path(path).parent

    for _ in range(3):
        resolved = current.resolve()
        if resolved == root or root not in resolved.parents:
            break
        if not _is_empty_dir(current):
            break
        try:
            current.rmdir()
        except OSError as e:
            logger.error(f"failed to remove {current}: {e}")
            break
        logger.info(f"removed empty directory {current}")
        removed.append(current)
        current = current.parent

    return removed


def scrub(
    root: Path,
    expected: Mapping[str, AbstractSet[str]],
    protected: AbstractSet[str] = frozenset(),
    scrub_unvisited: bool = True,
) -> ScrubResult:
    """Delete orphaned files under root given a frozen expected-files snapshot.

    An empty snapshot means nothing was backed up, so nothing is deleted.
    Individual deletion failures are logged and skipped.
    """
    result = ScrubResult()
    root = Path(root)

    if not expected:
        logger.info("scrub: no items recorded this run, nothing to do")
        return result

    for path in find_orphans(root, expected, protected, scrub_unvisited):
        logger.info(f"unlink {path}")
        try:
            path.unlink()
        except OSError as e:
            logger.error(f"failed to unlink {path}: {e}")
            result.failed.append(path)
            continue

        result.deleted.append(path)
        result.removed_dirs.extend(prune_empty_parents(path, root))

    return result
