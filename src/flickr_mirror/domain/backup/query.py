"""
Translate the [search] configuration block into a catalog query.

A `modified_since` key selects the "recently updated" query shape and sets
the run's watermark; it cannot be combined with other search options.
"""

import re
import time
from typing import Any, Dict, Optional

from ..catalog.pagination import DEFAULT_PER_PAGE, CatalogQuery
from .exceptions import ConfigurationError

HOUR = 60 * 60
DAY = 24 * HOUR

PERIODS = {
    "h": HOUR,
    "d": DAY,
    "w": 7 * DAY,
    "M": 31 * DAY,
    "y": 365 * DAY,
}

_RELATIVE = re.compile(r"^(\d+)([hdwMy])$")


def parse_modified_since(value: Any, now: Optional[float] = None) -> int:
    """Turn a modified-since value into epoch seconds.

    Accepts epoch seconds or `<n><h|d|w|M|y>` relative to now.

    Example:
        "2d" -> now - 2 days

    Raises:
        ValueError: If the value cannot be parsed
    """
    text = str(value).strip()
    if text.isdigit():
        return int(text)

    match = _RELATIVE.match(text)
    if not match or int(match.group(1)) == 0:
        raise ValueError(f"unable to parse modified_since criteria: {value!r}")

    now = time.time() if now is None else now
    return int(now - int(match.group(1)) * PERIODS[match.group(2)])


def build_query(
    search: Dict[str, Any], owner_id: str, now: Optional[float] = None
) -> CatalogQuery:
    """Build the catalog query for a run.

    Raises:
        ConfigurationError: On an invalid per_page, or an unparseable or
            conflicting modified_since
    """
    params = dict(search)
    raw_per_page = params.pop("per_page", DEFAULT_PER_PAGE)
    try:
        per_page = int(raw_per_page)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"search.per_page must be a number: {raw_per_page!r}") from e
    if per_page < 1:
        raise ConfigurationError(f"search.per_page must be positive: {per_page}")
    params.pop("page", None)
    modified_since = params.pop("modified_since", None)

    if modified_since is not None:
        if params:
            raise ConfigurationError(
                "search.modified_since provided, but also other search options: "
                f"{sorted(params)}"
            )
        try:
            min_date = parse_modified_since(modified_since, now)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return CatalogQuery(min_date=min_date, per_page=per_page)

    params["user_id"] = owner_id
    return CatalogQuery(params=params, per_page=per_page)
