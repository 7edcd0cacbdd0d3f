"""
Paginated catalog traversal.

A single PageIterator exposes `next_page()` for both traversal strategies:

- FORWARD fetches lazily: page N+1 is requested only when the caller asks for
  it after consuming page N.
- REVERSE_SLURP fetches every page before surfacing the first one, reverses
  items within each page and relinks the pages oldest-first. Catalogs that
  list newest-first are turned into ascending modification order this way,
  which a "modified since" watermark needs.

A failed page fetch raises CatalogError and ends the traversal; an empty
page is a normal result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from loguru import logger

from .models import Page

DEFAULT_PER_PAGE = 500

# Fetches one page by number
PageFetcher = Callable[[int], Page]


class TraversalStrategy(Enum):
    FORWARD = "forward"
    REVERSE_SLURP = "reverse_slurp"


@dataclass
class CatalogQuery:
    """Query shape for a run.

    `min_date` selects the "updated since" shape; otherwise `params` are
    passed to a filtered search.
    """

    params: Dict[str, Any] = field(default_factory=dict)
    min_date: Optional[int] = None
    per_page: int = DEFAULT_PER_PAGE

    @property
    def strategy(self) -> TraversalStrategy:
        if self.min_date is not None:
            return TraversalStrategy.REVERSE_SLURP
        return TraversalStrategy.FORWARD


def make_page_fetcher(client: Any, query: CatalogQuery) -> PageFetcher:
    """Bind a catalog client and query into a page-number -> Page function."""
    if query.min_date is not None:
        return lambda number: client.recently_updated(query.min_date, number, query.per_page)
    return lambda number: client.search(query.params, number, query.per_page)


class PageIterator:
    """Finite, non-restartable sequence of catalog pages."""

    def __init__(self, strategy: TraversalStrategy, fetch_page: PageFetcher):
        self.strategy = strategy
        self._fetch_page = fetch_page
        self._current: Optional[Page] = None
        self._started = False
        self._exhausted = False
        self.fetch_count = 0

    @classmethod
    def for_query(cls, client: Any, query: CatalogQuery) -> "PageIterator":
        return cls(query.strategy, make_page_fetcher(client, query))

    def _fetch(self, number: int) -> Page:
        page = self._fetch_page(number)
        self.fetch_count += 1
        logger.info(
            f"{self.strategy.value} iterator: fetched page {number} of "
            f"{page.total_pages}, {len(page.items)} items"
        )
        return page

    def next_page(self) -> Optional[Page]:
        """Return the next page, or None once the traversal is complete."""
        if self._exhausted:
            return None

        if not self._started:
            self._started = True
            if self.strategy == TraversalStrategy.REVERSE_SLURP:
                self._current = self._slurp()
            else:
                self._current = self._fetch(1)
        elif self.strategy == TraversalStrategy.REVERSE_SLURP:
            self._current = self._current.next if self._current else None
        else:
            if self._current is None or self._current.is_last:
                self._current = None
            else:
                self._current = self._fetch(self._current.number + 1)

        if self._current is None:
            self._exhausted = True
        return self._current

    def _slurp(self) -> Optional[Page]:
        pages: List[Page] = []
        number = 1
        total_pages: Optional[int] = None

        while True:
            fetched = self._fetch(number)
            if total_pages is None:
                total_pages = fetched.total_pages
            pages.insert(
                0,
                Page(
                    items=tuple(reversed(fetched.items)),
                    number=fetched.number,
                    total_pages=total_pages,
                    payload=fetched.payload,
                ),
            )
            number += 1
            if number > total_pages:
                break

        for current, following in zip(pages, pages[1:]):
            current.next = following
        return pages[0] if pages else None

    def __iter__(self) -> Iterator[Page]:
        while True:
            page = self.next_page()
            if page is None:
                return
            yield page
