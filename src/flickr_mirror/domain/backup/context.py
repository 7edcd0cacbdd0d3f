"""
Per-run state for a backup pass.

A RunContext is created for each run and threaded through the engine; it
owns the cancel flag, the expected-files ledger and the per-item records.
Nothing here is module-global, so the engine can run more than once in a
process.
"""

import os
import pwd
import socket
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from ..catalog.models import CatalogItem, SizeLabel


class RunState(Enum):
    IDLE = "idle"
    PAGE_ACTIVE = "page_active"
    ITEM_ACTIVE = "item_active"
    CANCELLED = "cancelled"
    SCRUBBING = "scrubbing"
    DONE = "done"


@dataclass
class BackupHooks:
    """Optional callbacks invoked synchronously at fixed points of a run.

    Any hook left as None is skipped.
    """

    on_queue_start: Optional[Callable[[Dict[str, Any]], None]] = None
    on_item_start: Optional[Callable[[CatalogItem], None]] = None
    on_item_finish: Optional[Callable[[CatalogItem, bool], None]] = None
    on_queue_finish: Optional[Callable[[], None]] = None


@dataclass
class BackupRecord:
    """What happened to one item during this run."""

    item_id: str
    paths: Dict[SizeLabel, Path] = field(default_factory=dict)
    written: Set[SizeLabel] = field(default_factory=set)
    not_modified: Set[SizeLabel] = field(default_factory=set)
    failed: Set[SizeLabel] = field(default_factory=set)
    changed: bool = False
    sidecar_path: Optional[Path] = None
    sidecar_written: bool = False
    embedded: bool = False
    ok: bool = False


class ExpectedFiles:
    """Ledger of filenames legitimately produced for each item id this run."""

    def __init__(self) -> None:
        self._files: Dict[str, Set[str]] = {}
        self._frozen = False

    def open(self, item_id: str) -> None:
        """Start the entry for an item. Each id may be opened once per run."""
        if self._frozen:
            raise RuntimeError("expected files ledger is frozen")
        if item_id in self._files:
            raise ValueError(f"item {item_id} already recorded this run")
        self._files[item_id] = set()

    def add(self, item_id: str, filename: str) -> None:
        if self._frozen:
            raise RuntimeError("expected files ledger is frozen")
        self._files[item_id].add(filename)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._files

    def __len__(self) -> int:
        return len(self._files)

    def get(self, item_id: str) -> frozenset:
        return frozenset(self._files.get(item_id, ()))

    def freeze(self) -> Mapping[str, frozenset]:
        """Stop accepting entries and return a read-only snapshot."""
        self._frozen = True
        return MappingProxyType(
            {item_id: frozenset(names) for item_id, names in self._files.items()}
        )


def short_hostname() -> str:
    """Host name up to the first dot."""
    return socket.gethostname().split(".")[0]


def local_user() -> tuple[str, str]:
    """(login, full name) of the effective user running the backup."""
    uid = os.geteuid()
    try:
        entry = pwd.getpwuid(uid)
    except KeyError:
        return str(uid), ""
    return entry.pw_name, entry.pw_gecos.split(",")[0]


@dataclass
class RunContext:
    """Mutable state of one backup run, owned by the engine."""

    watermark: Optional[int] = None
    state: RunState = RunState.IDLE
    expected: ExpectedFiles = field(default_factory=ExpectedFiles)
    records: List[BackupRecord] = field(default_factory=list)
    protected_ids: Set[str] = field(default_factory=set)
    cancel_requested: bool = False
    hostname: str = field(default_factory=short_hostname)
    user: tuple[str, str] = field(default_factory=local_user)

    def cancel(self) -> None:
        """Request cooperative cancellation after the in-flight item."""
        self.cancel_requested = True
