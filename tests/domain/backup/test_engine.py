"""Integration tests for the backup engine against an in-memory catalog."""

import os
from datetime import datetime
from unittest.mock import Mock, patch

import pytest

from flickr_mirror.core.config import Config
from flickr_mirror.domain.backup.context import BackupHooks, RunContext, RunState
from flickr_mirror.domain.backup.engine import run_backup
from flickr_mirror.domain.backup.exceptions import ConfigurationError
from flickr_mirror.domain.backup.fetcher import FetchOutcome, FetchResult
from flickr_mirror.domain.catalog.exceptions import AuthenticationError, CatalogError
from flickr_mirror.domain.catalog.models import (
    CatalogItem,
    MediaKind,
    Page,
    SizeLabel,
    SizeVariant,
)

NOW = 1_700_000_000
TAKEN = datetime(2021, 3, 7, 12, 0)
DAY_DIR = ("2021", "03", "07")


def make_item(item_id, title="photo", last_modified=1_600_000_000, media=MediaKind.IMAGE):
    return CatalogItem(
        id=item_id,
        secret="s",
        title=title,
        taken=TAKEN,
        posted=1_500_000_000,
        last_modified=last_modified,
        media=media,
        owner="12@N00",
        tags=("cat",),
    )


class FakeCatalog:
    """In-memory stand-in for FlickrClient."""

    def __init__(self, items, fail_info=(), missing_sizes=()):
        self.items = list(items)
        self.fail_info = set(fail_info)
        self.missing_sizes = set(missing_sizes)
        self.session = Mock()
        self.search_calls = []
        self.recent_calls = []

    def authenticate(self):
        return "12@N00"

    def _page(self, items, number, per_page):
        total = max(1, -(-len(items) // per_page))
        chunk = items[(number - 1) * per_page : number * per_page]
        payload = {"photos": {"page": number, "pages": total, "total": len(items)}}
        return Page(items=tuple(chunk), number=number, total_pages=total, payload=payload)

    def search(self, params, page, per_page):
        self.search_calls.append((dict(params), page))
        return self._page(self.items, page, per_page)

    def recently_updated(self, min_date, page, per_page):
        self.recent_calls.append((min_date, page))
        recent = [i for i in self.items if (i.last_modified or 0) >= min_date]
        recent.sort(key=lambda i: i.last_modified, reverse=True)
        return self._page(recent, page, per_page)

    def get_info(self, item_id, secret):
        if item_id in self.fail_info:
            raise CatalogError("flickr.photos.getInfo", "Photo not found", 1)
        return next(i for i in self.items if i.id == item_id)

    def get_sizes(self, item_id):
        sizes = {
            SizeLabel.ORIGINAL: SizeVariant(SizeLabel.ORIGINAL, f"https://img/{item_id}_o.jpg"),
            SizeLabel.SQUARE: SizeVariant(SizeLabel.SQUARE, f"https://img/{item_id}_s.jpg"),
            SizeLabel.VIDEO_ORIGINAL: SizeVariant(SizeLabel.VIDEO_ORIGINAL, f"https://vid/{item_id}"),
            SizeLabel.SITE_VIDEO: SizeVariant(SizeLabel.SITE_VIDEO, f"https://vid/{item_id}/site"),
        }
        return {k: v for k, v in sizes.items() if k not in self.missing_sizes}

    def probe_content_type(self, url):
        return "video/mp4"


class FakeFetcher:
    """Writes a small file for each source, or fails for selected sources."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []

    def __call__(self, session, source, target, timeout=60):
        self.calls.append(source)
        if source in self.fail:
            return FetchResult(FetchOutcome.FAILED, target, 500, "HTTP 500")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"data")
        return FetchResult(FetchOutcome.WRITTEN, target, 200)


@pytest.fixture
def photos_root(tmp_path):
    return tmp_path / "photos"


@pytest.fixture
def config(photos_root):
    cfg = Config()
    cfg.backup.photos_root = str(photos_root)
    cfg.sidecar.enabled = True
    cfg.search = {"per_page": 2}
    return cfg


def day_dir(root):
    return root.joinpath(*DAY_DIR)


class TestFullRun:
    """Tests for a complete, uncancelled run."""

    def test_writes_originals_and_sidecars(self, config, photos_root):
        """Each item gets its Original and a sidecar at the canonical path."""
        catalog = FakeCatalog([make_item("1", "Cat"), make_item("2", "Dog"), make_item("3", "")])
        fetcher = FakeFetcher()

        result = run_backup(config, catalog, fetcher=fetcher)

        folder = day_dir(photos_root)
        assert (folder / "20210307-1-cat.jpg").read_bytes() == b"data"
        assert (folder / "20210307-2-dog.jpg").exists()
        assert (folder / "20210307-3-untitled.jpg").exists()
        assert (folder / "20210307-1-cat.xml").exists()
        sidecar = (folder / "20210307-1-cat.xml").read_text(encoding="utf-8")
        assert (folder / "20210307-1-cat.jpg").resolve().as_uri() in sidecar
        assert result.items == 3
        assert result.files_written == 3
        assert result.sidecars_written == 3
        assert result.changed_items == 3
        assert result.state == RunState.DONE
        assert not result.cancelled

    def test_search_is_scoped_to_owner(self, config):
        """The catalog is searched for the authenticated account, page by page."""
        catalog = FakeCatalog([make_item(str(i)) for i in range(1, 6)])

        run_backup(config, catalog, fetcher=FakeFetcher())

        assert [page for _, page in catalog.search_calls] == [1, 2, 3]
        assert all(params["user_id"] == "12@N00" for params, _ in catalog.search_calls)

    def test_second_run_is_idempotent(self, config, photos_root):
        """A repeat run with no remote changes writes nothing."""
        catalog = FakeCatalog([make_item("1"), make_item("2")])
        run_backup(config, catalog, fetcher=FakeFetcher())

        fetcher = FakeFetcher()
        result = run_backup(config, catalog, fetcher=fetcher)

        assert fetcher.calls == []
        assert result.files_written == 0
        assert result.sidecars_written == 0
        assert result.changed_items == 0

    def test_updated_item_is_refetched(self, config, photos_root):
        """A remote update newer than the local copy triggers a fetch."""
        run_backup(config, FakeCatalog([make_item("1")]), fetcher=FakeFetcher())
        original = day_dir(photos_root) / "20210307-1-photo.jpg"
        os.utime(original, (1_600_000_000, 1_600_000_000))

        fetcher = FakeFetcher()
        result = run_backup(
            config, FakeCatalog([make_item("1", last_modified=1_650_000_000)]), fetcher=fetcher
        )

        assert fetcher.calls == ["https://img/1_o.jpg"]
        assert result.changed_items == 1
        assert result.sidecars_written == 1

    def test_force_refetches_everything(self, config):
        """Force re-fetches fresh files."""
        catalog = FakeCatalog([make_item("1")])
        run_backup(config, catalog, fetcher=FakeFetcher())

        config.backup.force = True
        fetcher = FakeFetcher()
        run_backup(config, catalog, fetcher=fetcher)

        assert fetcher.calls == ["https://img/1_o.jpg"]

    def test_enabled_sizes_only(self, config, photos_root):
        """Only size labels switched on in the configuration are fetched."""
        config.backup.fetch_square = True
        fetcher = FakeFetcher()

        run_backup(config, FakeCatalog([make_item("1")]), fetcher=fetcher)

        assert sorted(fetcher.calls) == ["https://img/1_o.jpg", "https://img/1_s.jpg"]
        assert (day_dir(photos_root) / "20210307-1-photo_s.jpg").exists()

    def test_video_uses_probed_extension(self, config, photos_root):
        """Video originals are named from the probed content type."""
        item = make_item("7", "Clip", media=MediaKind.VIDEO)
        fetcher = FakeFetcher()

        run_backup(config, FakeCatalog([item]), fetcher=fetcher)

        assert "https://vid/7" in fetcher.calls
        assert "https://vid/7/site" not in fetcher.calls
        assert (day_dir(photos_root) / "20210307-7-clip.mp4").exists()

    def test_video_sizes_skipped_for_images(self, config):
        """Video-only labels are never fetched for still images."""
        config.backup.fetch_site_mp4 = True
        fetcher = FakeFetcher()

        run_backup(config, FakeCatalog([make_item("1")]), fetcher=fetcher)

        assert fetcher.calls == ["https://img/1_o.jpg"]

    def test_missing_variant_is_skipped(self, config):
        """A size the catalog does not offer is skipped, the item still succeeds."""
        catalog = FakeCatalog([make_item("1")], missing_sizes={SizeLabel.ORIGINAL})
        fetcher = FakeFetcher()
        finished = []
        hooks = BackupHooks(on_item_finish=lambda item, ok: finished.append(ok))

        result = run_backup(config, catalog, hooks=hooks, fetcher=fetcher)

        assert fetcher.calls == []
        assert finished == [True]
        assert result.failed_items == 0

    def test_failed_variant_is_recoverable(self, config):
        """A failed download is counted and the run continues."""
        catalog = FakeCatalog([make_item("1"), make_item("2")])
        fetcher = FakeFetcher(fail={"https://img/1_o.jpg"})

        result = run_backup(config, catalog, fetcher=fetcher)

        assert result.files_failed == 1
        assert result.files_written == 1
        assert result.items == 2
        assert result.state == RunState.DONE

    def test_duplicate_listing_processed_once(self, config):
        """An id listed twice in one run is backed up once."""
        item = make_item("1")
        catalog = FakeCatalog([item])
        catalog.items = [item, item]
        fetcher = FakeFetcher()

        result = run_backup(config, catalog, fetcher=fetcher)

        assert fetcher.calls == ["https://img/1_o.jpg"]
        assert result.items == 1


class TestRunErrors:
    """Tests for fatal errors."""

    def test_missing_photos_root(self, config):
        """A run without a photos root is rejected before any catalog call."""
        config.backup.photos_root = None
        catalog = Mock()

        with pytest.raises(ConfigurationError):
            run_backup(config, catalog, fetcher=FakeFetcher())

        catalog.authenticate.assert_not_called()

    def test_photos_root_is_a_file(self, config, photos_root):
        """A photos root that is a regular file is rejected."""
        photos_root.parent.mkdir(parents=True, exist_ok=True)
        photos_root.write_text("oops")

        with pytest.raises(ConfigurationError):
            run_backup(config, FakeCatalog([]), fetcher=FakeFetcher())

    def test_authentication_failure_is_fatal(self, config):
        """Rejected credentials abort the run."""
        catalog = FakeCatalog([make_item("1")])
        catalog.authenticate = Mock(side_effect=AuthenticationError("bad token"))

        with pytest.raises(AuthenticationError):
            run_backup(config, catalog, fetcher=FakeFetcher())

    def test_conflicting_search_options(self, config):
        """modified_since combined with other keys is a configuration error."""
        config.search = {"modified_since": "1d", "tags": "cat"}

        with pytest.raises(ConfigurationError):
            run_backup(config, FakeCatalog([]), fetcher=FakeFetcher(), now=NOW)

    def test_non_numeric_page_size(self, config):
        """A non-numeric per_page is a configuration error, not a crash."""
        config.search = {"per_page": "many"}

        with pytest.raises(ConfigurationError):
            run_backup(config, FakeCatalog([]), fetcher=FakeFetcher())

    def test_page_failure_is_fatal(self, config):
        """A page that cannot be fetched ends the run."""
        catalog = FakeCatalog([make_item("1")])
        catalog.search = Mock(side_effect=CatalogError("flickr.photos.search", "HTTP 500"))

        with pytest.raises(CatalogError):
            run_backup(config, catalog, fetcher=FakeFetcher())


class TestHooks:
    """Tests for queue and item callbacks."""

    def test_hook_sequence(self, config):
        """Queue start fires once, item hooks per item, queue finish at the end."""
        events = []
        hooks = BackupHooks(
            on_queue_start=lambda payload: events.append(("queue_start", payload["photos"]["total"])),
            on_item_start=lambda item: events.append(("start", item.id)),
            on_item_finish=lambda item, ok: events.append(("finish", item.id, ok)),
            on_queue_finish=lambda: events.append(("queue_finish",)),
        )
        catalog = FakeCatalog([make_item("1"), make_item("2"), make_item("3")])

        run_backup(config, catalog, hooks=hooks, fetcher=FakeFetcher())

        assert events == [
            ("queue_start", 3),
            ("start", "1"),
            ("finish", "1", True),
            ("start", "2"),
            ("finish", "2", True),
            ("start", "3"),
            ("finish", "3", True),
            ("queue_finish",),
        ]

    def test_failed_item_reports_false(self, config):
        """Items whose details cannot be fetched finish with ok=False."""
        finished = {}
        hooks = BackupHooks(on_item_finish=lambda item, ok: finished.update({item.id: ok}))
        catalog = FakeCatalog([make_item("1"), make_item("2")], fail_info={"1"})

        result = run_backup(config, catalog, hooks=hooks, fetcher=FakeFetcher())

        assert finished == {"1": False, "2": True}
        assert result.failed_items == 1


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_after_first_item(self, config, photos_root):
        """Cancelling lets the in-flight item finish and stops before the next."""
        context = RunContext()
        started = []
        queue_finished = []
        hooks = BackupHooks(
            on_item_start=lambda item: started.append(item.id),
            on_item_finish=lambda item, ok: context.cancel(),
            on_queue_finish=lambda: queue_finished.append(True),
        )
        catalog = FakeCatalog([make_item("1"), make_item("2"), make_item("3")])

        result = run_backup(config, catalog, hooks=hooks, context=context, fetcher=FakeFetcher())

        assert started == ["1"]
        assert (day_dir(photos_root) / "20210307-1-photo.jpg").exists()
        assert result.cancelled
        assert result.state == RunState.CANCELLED
        assert queue_finished == []

    def test_cancelled_run_never_scrubs(self, config, photos_root):
        """Orphans survive a cancelled run."""
        config.backup.scrub_backups = True
        orphan = photos_root / "2010/01/01/20100101-99-old.jpg"
        orphan.parent.mkdir(parents=True)
        orphan.write_bytes(b"x")

        context = RunContext()
        hooks = BackupHooks(on_item_finish=lambda item, ok: context.cancel())
        catalog = FakeCatalog([make_item("1"), make_item("2")])

        result = run_backup(config, catalog, hooks=hooks, context=context, fetcher=FakeFetcher())

        assert result.scrub is None
        assert orphan.exists()

    def test_cancel_before_start(self, config):
        """A run cancelled up front fetches no pages."""
        context = RunContext()
        context.cancel()
        catalog = FakeCatalog([make_item("1")])

        result = run_backup(config, catalog, context=context, fetcher=FakeFetcher())

        assert catalog.search_calls == []
        assert result.items == 0
        assert result.state == RunState.CANCELLED


class TestScrubIntegration:
    """Tests for the scrub pass at the end of a run."""

    def test_orphans_deleted(self, config, photos_root):
        """Files of unknown ids and stale names are removed after a full run."""
        config.backup.scrub_backups = True
        orphan = photos_root / "2010/01/01/20100101-99-old.jpg"
        orphan.parent.mkdir(parents=True)
        orphan.write_bytes(b"x")
        renamed = day_dir(photos_root) / "20210307-1-former_title.jpg"
        renamed.parent.mkdir(parents=True)
        renamed.write_bytes(b"x")

        result = run_backup(config, FakeCatalog([make_item("1")]), fetcher=FakeFetcher())

        assert not orphan.exists()
        assert not (photos_root / "2010").exists()
        assert not renamed.exists()
        assert (day_dir(photos_root) / "20210307-1-photo.jpg").exists()
        assert (day_dir(photos_root) / "20210307-1-photo.xml").exists()
        assert len(result.scrub.deleted) == 2
        assert result.state == RunState.DONE

    def test_failed_download_not_scrubbed(self, config, photos_root):
        """A variant that failed to refresh keeps its existing file."""
        config.backup.scrub_backups = True
        config.backup.force = True
        existing = day_dir(photos_root) / "20210307-1-photo.jpg"
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"old")

        run_backup(
            config,
            FakeCatalog([make_item("1")]),
            fetcher=FakeFetcher(fail={"https://img/1_o.jpg"}),
        )

        assert existing.read_bytes() == b"old"

    def test_failed_item_protected(self, config, photos_root):
        """Files of an item whose details failed are never scrubbed."""
        config.backup.scrub_backups = True
        existing = day_dir(photos_root) / "20210307-1-photo.jpg"
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"old")
        catalog = FakeCatalog([make_item("1"), make_item("2")], fail_info={"1"})

        run_backup(config, catalog, fetcher=FakeFetcher())

        assert existing.exists()

    def test_scrub_disabled(self, config, photos_root):
        """Without scrub_backups nothing is deleted."""
        orphan = photos_root / "2010/01/01/20100101-99-old.jpg"
        orphan.parent.mkdir(parents=True)
        orphan.write_bytes(b"x")

        result = run_backup(config, FakeCatalog([make_item("1")]), fetcher=FakeFetcher())

        assert result.scrub is None
        assert orphan.exists()


class TestModifiedSince:
    """Tests for updated-since runs."""

    def test_uses_recently_updated_and_watermark(self, config):
        """modified_since queries recent updates and records the watermark."""
        config.search = {"modified_since": "1d"}
        context = RunContext()
        catalog = FakeCatalog([make_item("1", last_modified=NOW - 3600)])

        run_backup(config, catalog, context=context, fetcher=FakeFetcher(), now=NOW)

        assert context.watermark == NOW - 86400
        assert catalog.recent_calls == [(NOW - 86400, 1)]
        assert catalog.search_calls == []

    def test_oldest_updates_processed_first(self, config):
        """Recent updates are processed in ascending modification order."""
        config.search = {"modified_since": "1d", "per_page": 2}
        started = []
        hooks = BackupHooks(on_item_start=lambda item: started.append(item.id))
        items = [make_item(str(i), last_modified=NOW - 1000 * i) for i in range(1, 6)]

        run_backup(config, FakeCatalog(items), hooks=hooks, fetcher=FakeFetcher(), now=NOW)

        assert started == ["5", "4", "3", "2", "1"]

    def test_queue_start_fires_on_page_one(self, config):
        """Queue start fires when page 1 is entered, which comes last here."""
        config.search = {"modified_since": "1d", "per_page": 2}
        events = []
        hooks = BackupHooks(
            on_queue_start=lambda payload: events.append("queue_start"),
            on_item_start=lambda item: events.append(item.id),
        )
        items = [make_item(str(i), last_modified=NOW - 1000 * i) for i in range(1, 6)]

        run_backup(config, FakeCatalog(items), hooks=hooks, fetcher=FakeFetcher(), now=NOW)

        assert events == ["5", "4", "3", "queue_start", "2", "1"]

    def test_metadata_change_rewrites_sidecar(self, config, photos_root):
        """An item updated past the watermark refreshes an older sidecar."""
        config.search = {"modified_since": "1d"}
        folder = day_dir(photos_root)
        folder.mkdir(parents=True)
        original = folder / "20210307-1-photo.jpg"
        original.write_bytes(b"data")
        os.utime(original, (NOW, NOW))
        sidecar = folder / "20210307-1-photo.xml"
        sidecar.write_bytes(b"<old/>")
        os.utime(sidecar, (NOW - 2 * 86400, NOW - 2 * 86400))

        fetcher = FakeFetcher()
        result = run_backup(
            config,
            FakeCatalog([make_item("1", last_modified=NOW - 3600)]),
            fetcher=fetcher,
            now=NOW,
        )

        assert fetcher.calls == []
        assert result.changed_items == 1
        assert result.sidecars_written == 1
        assert sidecar.read_bytes() != b"<old/>"


class TestEmbedding:
    """Tests for metadata embedding into originals."""

    def test_embeds_changed_originals(self, config, photos_root):
        """Changed items get their metadata embedded in the Original."""
        config.embed.enabled = True
        embedder = Mock(return_value=True)

        result = run_backup(
            config, FakeCatalog([make_item("1", "Cat")]), fetcher=FakeFetcher(), embedder=embedder
        )

        path, fields = embedder.call_args.args
        assert path == day_dir(photos_root) / "20210307-1-cat.jpg"
        assert fields == {"headline": "Cat", "caption": "", "keywords": ["cat"]}
        assert result.embedded == 1

    def test_unchanged_items_not_embedded(self, config):
        """Items that did not change are left alone."""
        config.embed.enabled = True
        catalog = FakeCatalog([make_item("1")])
        run_backup(config, catalog, fetcher=FakeFetcher(), embedder=Mock(return_value=True))

        embedder = Mock(return_value=True)
        run_backup(config, catalog, fetcher=FakeFetcher(), embedder=embedder)

        embedder.assert_not_called()


class TestSidecarProvenance:
    """Tests for what the engine hands to the describer."""

    def test_describer_gets_copies_and_host(self, config, photos_root):
        """The describer sees the item's local paths and the run's host and user."""
        calls = []

        def describer(item, files, provenance):
            calls.append((item.id, list(files), provenance))
            return b"<rdf/>"

        context = RunContext(hostname="studio", user=("ada", "Ada Lovelace"))
        run_backup(
            config, FakeCatalog([make_item("1", "Cat")]), context=context,
            describer=describer, fetcher=FakeFetcher(),
        )

        [(item_id, files, provenance)] = calls
        assert item_id == "1"
        assert files == [day_dir(photos_root) / "20210307-1-cat.jpg"]
        assert provenance.creator_uri == "x-urn:studio#ada"
        assert provenance.full_name == "Ada Lovelace"
        assert provenance.created is not None

    def test_hostname_is_short(self):
        """The run context keeps the host name up to the first dot."""
        with patch("socket.gethostname", return_value="studio.example.org"):
            assert RunContext().hostname == "studio"


class TestFetchOutcomes:
    """Tests for how fetch outcomes are recorded per item."""

    def test_not_modified_counted_separately(self, config, photos_root):
        """A 304 from the server is neither a write nor a failure."""
        def fetcher(session, source, target, timeout=60):
            return FetchResult(FetchOutcome.NOT_MODIFIED, target, 304)

        result = run_backup(config, FakeCatalog([make_item("1")]), fetcher=fetcher)

        [record] = result.records
        assert record.not_modified == {SizeLabel.ORIGINAL}
        assert record.written == set()
        assert record.failed == set()
        assert result.files_not_modified == 1
        assert result.files_written == 0
        assert result.failed_items == 0
