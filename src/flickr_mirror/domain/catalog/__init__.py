"""Catalog domain - remote Flickr catalog access.

This domain handles:
- Item, size variant and page models
- Signed REST calls and response parsing
- Paginated traversal (forward and reverse-slurp)
"""

from .client import FlickrClient, parse_info, parse_page, parse_sizes, sign_params
from .exceptions import AuthenticationError, CatalogError, FlickrError
from .models import CatalogItem, MediaKind, Page, SizeLabel, SizeVariant
from .pagination import CatalogQuery, PageIterator, TraversalStrategy

__all__ = [
    # Client
    "FlickrClient",
    "parse_info",
    "parse_page",
    "parse_sizes",
    "sign_params",
    # Exceptions
    "AuthenticationError",
    "CatalogError",
    "FlickrError",
    # Models
    "CatalogItem",
    "MediaKind",
    "Page",
    "SizeLabel",
    "SizeVariant",
    # Pagination
    "CatalogQuery",
    "PageIterator",
    "TraversalStrategy",
]
