"""
Canonical file placement for backed-up items.

Every file lands at

    <root>/<YYYY>/<MM>/<DD>/<YYYYMMDD>-<id>-<title><suffix>.<ext>

where the date is the item's taken date and the title is normalized to a
filesystem-safe ASCII slug. The same inputs always produce the same path.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote

from loguru import logger
from unidecode import unidecode

from ..catalog.models import SizeLabel

SIDECAR_EXTENSION = "xml"
UNKNOWN_EXTENSION = "unknown"
UNTITLED = "untitled"

# Filenames produced here start with the date stamp and the item id
FILENAME_PATTERN = re.compile(r"^(\d{8})-(\d+)-")

_EXT_FROM_SOURCE = re.compile(r"\.([^./]{3,4})$")
_VIDEO_TYPE = re.compile(r"^video/([-a-z0-9]+)")

# Returns the Content-Type declared for a URL, or None
ContentTypeProbe = Callable[[str], Optional[str]]


def normalize_title(title: Optional[str]) -> str:
    """Convert a title to a safe, lowercase ASCII slug.

    Idempotent: normalizing an already normalized title returns it unchanged.

    Example:
        "Café @ Night & Day" -> "cafe_at_night_and_day"
        "Москва зимой" -> "moskva_zimoi"
    """
    text = unquote(title or "")
    text = text.lower()

    if text.endswith(".jpg"):
        text = text[: -len(".jpg")]

    # Transliterate to ASCII; unidecode may reintroduce capitals
    text = unidecode(text).lower()

    text = text.replace("@", " at ").replace("&", " and ").replace("*", " star ")
    text = text.replace("'", "").replace("^", "")

    text = re.sub(r"[^a-z0-9_\-\[\]]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()

    return text.replace(" ", "_")


def clean_title(title: Optional[str]) -> str:
    """Normalized title, or 'untitled' when nothing survives normalization."""
    return normalize_title(title) or UNTITLED


def date_parts(taken: Optional[datetime]) -> tuple[str, str, str]:
    """(YYYY, MM, DD) strings for a taken date; epoch when unknown."""
    if taken is None:
        taken = datetime(1970, 1, 1)
    return f"{taken.year:04d}", f"{taken.month:02d}", f"{taken.day:02d}"


def build_filename(
    item_id: str, taken: Optional[datetime], title: Optional[str], suffix: str, ext: str
) -> str:
    yyyy, mm, dd = date_parts(taken)
    return f"{yyyy}{mm}{dd}-{item_id}-{clean_title(title)}{suffix}.{ext}"


def resolve_path(
    root: Path,
    item_id: str,
    label: SizeLabel,
    taken: Optional[datetime],
    ext: str,
    title: Optional[str] = None,
) -> Path:
    """Canonical path for one size variant of an item."""
    yyyy, mm, dd = date_parts(taken)
    return Path(root) / yyyy / mm / dd / build_filename(item_id, taken, title, label.suffix, ext)


def sidecar_path(
    root: Path, item_id: str, taken: Optional[datetime], title: Optional[str] = None
) -> Path:
    """Canonical path for an item's metadata sidecar document."""
    yyyy, mm, dd = date_parts(taken)
    return Path(root) / yyyy / mm / dd / build_filename(item_id, taken, title, "", SIDECAR_EXTENSION)


def extension_from_content_type(content_type: Optional[str]) -> str:
    """Map a video Content-Type to a file extension.

    video/mp4 -> mp4, video/<x> -> video-<x>, anything else -> video-unknown
    """
    match = _VIDEO_TYPE.match((content_type or "").strip().lower())
    if not match:
        return "video-unknown"
    subtype = match.group(1)
    return "mp4" if subtype == "mp4" else f"video-{subtype}"


def resolve_extension(
    label: SizeLabel, source: str, probe: Optional[ContentTypeProbe] = None
) -> str:
    """Resolve the file extension for a variant. Never fails.

    Still images use the trailing 3-4 characters of the source locator.
    Video variants probe the source and use the declared content type.
    """
    ext: Optional[str] = None

    if label.video_only:
        content_type = None
        if probe is not None:
            try:
                content_type = probe(source)
            except Exception as e:
                logger.warning(f"size {label.provider_label}: probe of {source} failed: {e}")
        ext = extension_from_content_type(content_type)
        logger.info(
            f"size {label.provider_label}: using extension {ext} "
            f"from Content-Type {content_type} of video"
        )
    else:
        path = (source or "").split("?", 1)[0]
        match = _EXT_FROM_SOURCE.search(path)
        if match:
            ext = match.group(1).lower()
            logger.info(f"size {label.provider_label}: using extension {ext} from source URL")

    if not ext:
        logger.info(f'size {label.provider_label}: using extension "{UNKNOWN_EXTENSION}" as last resort')
        ext = UNKNOWN_EXTENSION
    return ext


def item_id_from_filename(name: str) -> Optional[str]:
    """Extract the embedded item id from a canonical filename."""
    match = FILENAME_PATTERN.match(name)
    return match.group(2) if match else None
