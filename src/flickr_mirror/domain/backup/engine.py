"""
Backup engine for flickr-mirror

Drives one incremental backup pass: walks catalog pages, brings each item's
size variants and metadata sidecar up to date, records every filename the
run accounts for, and finally scrubs orphaned files.

Runs are strictly sequential. Cancellation is cooperative: it is checked
before each item and before each page fetch, the in-flight item always
completes, and a cancelled run never scrubs.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from flickr_mirror.core.config import Config
from flickr_mirror.core.output import log

from ..catalog.exceptions import AuthenticationError, FlickrError
from ..catalog.models import CatalogItem, SizeLabel
from ..catalog.pagination import PageIterator
from ..metadata.describer import Provenance, describe_item
from ..metadata.embedder import EmbedFields, build_embed_fields, embed_metadata
from .context import BackupHooks, BackupRecord, RunContext, RunState
from .exceptions import ConfigurationError
from .fetcher import FetchResult, fetch_asset
from .placement import clean_title, resolve_extension, resolve_path, sidecar_path
from .query import build_query
from .scrub import ScrubResult, scrub
from .staleness import get_file_mtime, item_changed, needs_fetch, sidecar_stale

Describer = Callable[..., bytes]
Embedder = Callable[[Path, EmbedFields], bool]
Fetcher = Callable[..., FetchResult]


@dataclass
class BackupResult:
    """Summary of a backup run."""

    items: int = 0
    failed_items: int = 0
    changed_items: int = 0
    files_written: int = 0
    files_not_modified: int = 0
    files_failed: int = 0
    sidecars_written: int = 0
    embedded: int = 0
    cancelled: bool = False
    state: RunState = RunState.IDLE
    scrub: Optional[ScrubResult] = None
    records: list = field(default_factory=list, repr=False)

    @classmethod
    def from_context(cls, context: RunContext, scrub_result: Optional[ScrubResult] = None) -> "BackupResult":
        result = cls(
            cancelled=context.cancel_requested,
            state=context.state,
            scrub=scrub_result,
            records=list(context.records),
        )
        for record in context.records:
            result.items += 1
            result.failed_items += 0 if record.ok else 1
            result.changed_items += 1 if record.changed else 0
            result.files_written += len(record.written)
            result.files_not_modified += len(record.not_modified)
            result.files_failed += len(record.failed)
            result.sidecars_written += 1 if record.sidecar_written else 0
            result.embedded += 1 if record.embedded else 0
        return result


def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    if hook is not None:
        hook(*args)


def validate_photos_root(config: Config) -> Path:
    """Return the configured photos root, creating it if needed.

    Raises:
        ConfigurationError: If no root is configured or it is not usable
    """
    photos_root = config.backup.photos_root
    if not photos_root:
        raise ConfigurationError("no photos root defined (backup.photos_root)")

    root = Path(photos_root).expanduser()
    if root.exists() and not root.is_dir():
        raise ConfigurationError(f"photos root is not a directory: {root}")

    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"unable to create photos root {root}: {e}") from e
    return root


def write_sidecar(path: Path, document: bytes) -> None:
    """Write a sidecar document atomically (temp file, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(document)
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def provenance_for(context: RunContext) -> Provenance:
    """Local host, user and current time for describing written copies."""
    login, full_name = context.user
    return Provenance(
        hostname=context.hostname,
        login=login,
        full_name=full_name,
        created=datetime.now(timezone.utc),
    )


def _backup_variants(
    config: Config,
    client: Any,
    context: RunContext,
    root: Path,
    info: CatalogItem,
    sizes: dict,
    record: BackupRecord,
    fetcher: Fetcher,
) -> None:
    force = config.backup.force

    for label in SizeLabel:
        name = label.provider_label
        prefix = f"item {info.id}: size {name}:"

        if not label.applies_to(info.media):
            continue

        if not config.backup.should_fetch(label):
            logger.debug(f"{prefix} {label.config_key} option is false, skipping")
            continue

        variant = sizes.get(label)
        if variant is None:
            logger.warning(f"{prefix} no copy at this size")
            continue

        ext = resolve_extension(label, variant.source, client.probe_content_type)
        target = resolve_path(root, info.id, label, info.taken, ext, info.title)
        logger.info(f"{prefix} target name is {target.name}")

        context.expected.add(info.id, target.name)
        record.paths[label] = target

        local_mtime = get_file_mtime(target)
        if not needs_fetch(local_mtime, info.last_modified, force):
            logger.info(
                f"{prefix} skipping, file has not changed ({local_mtime}/{info.last_modified})"
            )
            continue

        result = fetcher(client.session, variant.source, target, config.flickr.timeout)

        if result.written:
            logger.info(f"{prefix} stored {target}")
            record.written.add(label)
        elif result.ok:
            logger.info(f"{prefix} no changes")
            record.not_modified.add(label)
        else:
            log(
                f"item {info.id}: size {name}: failed to store '{variant.source}' "
                f"as '{target}'; {result.error}",
                level="error",
            )
            record.failed.add(label)


def backup_item(
    config: Config,
    client: Any,
    context: RunContext,
    root: Path,
    item: CatalogItem,
    describer: Describer = describe_item,
    embedder: Embedder = embed_metadata,
    fetcher: Fetcher = fetch_asset,
) -> BackupRecord:
    """Back up one item: size variants, sidecar and embedded metadata.

    Failures are contained to the item; only authentication errors
    propagate.
    """
    record = BackupRecord(item_id=item.id)

    if item.id in context.expected:
        logger.warning(f"item {item.id}: already backed up this run, skipping")
        record.ok = True
        return record

    context.records.append(record)

    try:
        info = client.get_info(item.id, item.secret)
        sizes = client.get_sizes(item.id)
    except AuthenticationError:
        raise
    except FlickrError as e:
        log(f"item {item.id}: failed to fetch item details: {e}", level="error")
        # Keep whatever is on disk for this item out of the scrub
        context.protected_ids.add(item.id)
        return record

    context.expected.open(info.id)

    force = config.backup.force
    _backup_variants(config, client, context, root, info, sizes, record, fetcher)

    sidecar_root = Path(config.sidecar.root).expanduser() if config.sidecar.root else root
    sidecar = sidecar_path(sidecar_root, info.id, info.taken, info.title)
    context.expected.add(info.id, sidecar.name)
    record.sidecar_path = sidecar

    record.changed = item_changed(
        len(record.written), info.last_modified, context.watermark, force
    )
    if record.changed and not record.written:
        logger.info(
            f"item {info.id}: has changed (item object): "
            f"{info.last_modified} >= {context.watermark}"
        )

    if config.sidecar.enabled:
        stale = sidecar_stale(
            get_file_mtime(sidecar),
            record.changed,
            context.watermark,
            force or config.sidecar.force,
        )
        if stale:
            try:
                document = describer(info, record.paths.values(), provenance_for(context))
                write_sidecar(sidecar, document)
                record.sidecar_written = True
                logger.info(f"item {info.id}: stored sidecar {sidecar}")
            except (OSError, ValueError, FlickrError) as e:
                log(f"item {info.id}: failed to write sidecar '{sidecar}': {e}", level="error")
        else:
            logger.info(f"item {info.id}: sidecar has not changed")

    if config.embed.enabled and (record.changed or force):
        original = record.paths.get(SizeLabel.ORIGINAL)
        if original is not None and original.exists():
            record.embedded = embedder(original, build_embed_fields(info))
            if not record.embedded:
                log(f"item {info.id}: failed to embed metadata in {original}", level="warning")

    state = "changed" if record.changed else "not changed"
    logger.info(f"item {info.id}: has {state}")

    record.ok = True
    return record


def run_backup(
    config: Config,
    client: Any,
    hooks: Optional[BackupHooks] = None,
    context: Optional[RunContext] = None,
    describer: Describer = describe_item,
    embedder: Embedder = embed_metadata,
    fetcher: Fetcher = fetch_asset,
    now: Optional[float] = None,
) -> BackupResult:
    """Run one backup pass.

    Args:
        config: Loaded configuration
        client: Catalog client (FlickrClient or compatible)
        hooks: Optional queue/item callbacks
        context: Run context; pass one in to be able to cancel the run
        describer: Produces sidecar document bytes for an item
        embedder: Embeds metadata into the Original image
        fetcher: Conditional asset retrieval
        now: Clock override for relative modified_since values

    Returns:
        BackupResult summarizing the run

    Raises:
        ConfigurationError: Missing or invalid configuration
        AuthenticationError: Credentials rejected by the catalog
        CatalogError: A page could not be fetched or parsed
    """
    hooks = hooks or BackupHooks()
    context = context or RunContext()

    root = validate_photos_root(config)
    owner_id = client.authenticate()

    query = build_query(config.search, owner_id, now)
    context.watermark = query.min_date

    logger.info(
        f"search args ({query.strategy.value}): "
        f"{query.params or {'min_date': query.min_date}}"
    )

    iterator = PageIterator.for_query(client, query)

    while not context.cancel_requested:
        page = iterator.next_page()
        if page is None:
            break

        context.state = RunState.PAGE_ACTIVE
        # Reverse traversals reach page 1 last
        if page.number == 1:
            _call_hook(hooks.on_queue_start, page.payload)

        for item in page.items:
            if context.cancel_requested:
                break

            context.state = RunState.ITEM_ACTIVE
            log(f"item {item.id}: now backing up ({clean_title(item.title)})")
            _call_hook(hooks.on_item_start, item)

            record = backup_item(
                config, client, context, root, item, describer, embedder, fetcher
            )

            _call_hook(hooks.on_item_finish, item, record.ok)
            context.state = RunState.PAGE_ACTIVE

    if context.cancel_requested:
        context.state = RunState.CANCELLED
        log("backup cancelled, scrubbing skipped", level="warning")
        return BackupResult.from_context(context)

    _call_hook(hooks.on_queue_finish)

    scrub_result = None
    if config.backup.scrub_backups:
        context.state = RunState.SCRUBBING
        log("scrubbing backups")
        snapshot = context.expected.freeze()
        scrub_result = scrub(
            root,
            snapshot,
            frozenset(context.protected_ids),
            scrub_unvisited=config.backup.scrub_unvisited,
        )

    context.state = RunState.DONE
    return BackupResult.from_context(context, scrub_result)
