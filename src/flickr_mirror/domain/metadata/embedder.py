"""
Embed a small metadata map into original JPEG images.

Title is stored as the headline, description as the caption and tags as
keywords. Values go into EXIF: ImageDescription for the caption and the
XP* fields that most photo tools read for title, subject and keywords.
The EXIF segment is rewritten in place with piexif so the image data is
never re-encoded.
"""

import io
import os
from pathlib import Path
from typing import Dict, List, Sequence, Union

import piexif
from loguru import logger
from PIL import Image, UnidentifiedImageError

from ..catalog.models import CatalogItem

# EXIF tag ids
IMAGE_DESCRIPTION = 0x010E
XP_TITLE = 0x9C9B
XP_COMMENT = 0x9C9C
XP_KEYWORDS = 0x9C9E
XP_SUBJECT = 0x9C9F

EmbedFields = Dict[str, Union[str, List[str]]]


def build_embed_fields(item: CatalogItem) -> EmbedFields:
    """Headline/caption/keywords map for an item."""
    return {
        "headline": item.title,
        "caption": item.description,
        "keywords": format_keywords(item.tags),
    }


def format_keywords(tags: Sequence[str]) -> List[str]:
    """Quote keywords that contain whitespace so they survive joining."""
    keywords = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            continue
        if any(ch.isspace() for ch in tag):
            tag = f'"{tag}"'
        keywords.append(tag)
    return keywords


def _xp(value: str) -> bytes:
    # XP* tags are UTF-16LE, NUL terminated
    return value.encode("utf-16-le") + b"\x00\x00"


def _latin1(value: str) -> bytes:
    return value.encode("iso-8859-1", "replace")


def embed_metadata(file_path: Path, fields: EmbedFields) -> bool:
    """Write headline, caption and keywords into a JPEG using atomic writes.

    Only the EXIF segment is replaced; the compressed image data is copied
    through untouched.

    Args:
        file_path: Path to the original image
        fields: Map with optional 'headline', 'caption' and 'keywords'

    Returns:
        True if successful, False otherwise
    """
    file_path = Path(file_path)
    temp_path = file_path.with_name(file_path.name + ".tmp")

    try:
        with Image.open(file_path) as img:
            if img.format != "JPEG":
                logger.warning(f"unsupported format for metadata embedding: {file_path} ({img.format})")
                return False

        data = file_path.read_bytes()
        exif = piexif.load(data)

        headline = str(fields.get("headline") or "")
        caption = str(fields.get("caption") or "")
        keywords = fields.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [keywords]

        ifd = exif["0th"]
        if headline:
            ifd[XP_TITLE] = _xp(headline)
            ifd[XP_SUBJECT] = _xp(headline)
        if caption:
            ifd[IMAGE_DESCRIPTION] = _latin1(caption)
            ifd[XP_COMMENT] = _xp(caption)
        if keywords:
            ifd[XP_KEYWORDS] = _xp(";".join(keywords))

        # Splice the new segment in beside the original, then swap it in
        output = io.BytesIO()
        piexif.insert(piexif.dump(exif), data, output)
        temp_path.write_bytes(output.getvalue())
        os.replace(temp_path, file_path)
        return True

    except (OSError, UnidentifiedImageError, ValueError) as e:
        logger.error(f"error embedding metadata into {file_path}: {e}")
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        return False
