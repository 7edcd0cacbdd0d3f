"""
Catalog domain models.

Contains data structures for remote catalog items, their size variants and
result pages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class MediaKind(str, Enum):
    """Media kind reported by the catalog for an item."""

    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def from_provider(cls, value: Optional[str]) -> "MediaKind":
        """Map a provider media string ('photo', 'video') to a MediaKind."""
        if value and value.lower() == "video":
            return cls.VIDEO
        return cls.IMAGE


class SizeLabel(Enum):
    """Size variants that can be backed up for an item.

    Each member carries (provider label, filename suffix, config key,
    fetched by default, video only).
    """

    ORIGINAL = ("Original", "", "fetch_original", True, False)
    MEDIUM = ("Medium", "_m", "fetch_medium", False, False)
    MEDIUM_640 = ("Medium 640", "_z", "fetch_medium_640", False, False)
    SQUARE = ("Square", "_s", "fetch_square", False, False)
    SITE_VIDEO = ("Site MP4", "_site", "fetch_site_mp4", False, True)
    VIDEO_ORIGINAL = ("Video Original", "", "fetch_video_original", True, True)

    def __init__(
        self,
        provider_label: str,
        suffix: str,
        config_key: str,
        fetch_by_default: bool,
        video_only: bool,
    ):
        self.provider_label = provider_label
        self.suffix = suffix
        self.config_key = config_key
        self.fetch_by_default = fetch_by_default
        self.video_only = video_only

    def applies_to(self, media: MediaKind) -> bool:
        """Video-only labels are skipped for still images."""
        return media == MediaKind.VIDEO or not self.video_only

    @classmethod
    def from_provider_label(cls, label: str) -> Optional["SizeLabel"]:
        for member in cls:
            if member.provider_label == label:
                return member
        return None


@dataclass(frozen=True)
class SizeVariant:
    """A size label paired with the remote locator it can be fetched from."""

    label: SizeLabel
    source: str


@dataclass(frozen=True)
class CatalogItem:
    """Immutable snapshot of a catalog item as returned by one fetch."""

    id: str
    secret: str
    title: str = ""
    taken: Optional[datetime] = None
    posted: Optional[int] = None
    last_modified: Optional[int] = None
    media: MediaKind = MediaKind.IMAGE
    owner: Optional[str] = None
    description: str = ""
    tags: Tuple[str, ...] = ()
    original_secret: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass
class Page:
    """One page of catalog results.

    `next` is only populated by traversals that materialize every page up
    front.
    """

    items: Tuple[CatalogItem, ...]
    number: int
    total_pages: int
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)
    next: Optional["Page"] = field(default=None, repr=False)

    @property
    def is_last(self) -> bool:
        return self.number >= self.total_pages
