"""Metadata domain - descriptive documents and embedded image metadata."""

from .describer import Provenance, describe_item
from .embedder import build_embed_fields, embed_metadata, format_keywords

__all__ = [
    "Provenance",
    "describe_item",
    "build_embed_fields",
    "embed_metadata",
    "format_keywords",
]
