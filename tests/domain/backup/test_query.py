"""Unit tests for turning search configuration into catalog queries."""

import pytest

from flickr_mirror.domain.backup.exceptions import ConfigurationError
from flickr_mirror.domain.backup.query import build_query, parse_modified_since
from flickr_mirror.domain.catalog.pagination import DEFAULT_PER_PAGE, TraversalStrategy

NOW = 1_700_000_000


class TestParseModifiedSince:
    """Tests for modified-since parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1h", NOW - 3600),
            ("2d", NOW - 2 * 86400),
            ("1w", NOW - 7 * 86400),
            ("1M", NOW - 31 * 86400),
            ("1y", NOW - 365 * 86400),
        ],
    )
    def test_relative(self, value, expected):
        """Relative specs are subtracted from now."""
        assert parse_modified_since(value, now=NOW) == expected

    def test_epoch(self):
        """Plain digits are epoch seconds."""
        assert parse_modified_since("1234567890", now=NOW) == 1234567890
        assert parse_modified_since(1234567890, now=NOW) == 1234567890

    @pytest.mark.parametrize("value", ["", "d", "0d", "2x", "-1d", "yesterday"])
    def test_invalid(self, value):
        """Unparseable values raise ValueError."""
        with pytest.raises(ValueError):
            parse_modified_since(value, now=NOW)


class TestBuildQuery:
    """Tests for query construction."""

    def test_search_scoped_to_owner(self):
        """Filtered searches are pinned to the authenticated account."""
        query = build_query({"tags": "cat"}, "12@N00")

        assert query.params == {"tags": "cat", "user_id": "12@N00"}
        assert query.min_date is None
        assert query.strategy == TraversalStrategy.FORWARD
        assert query.per_page == DEFAULT_PER_PAGE

    def test_owner_cannot_be_overridden(self):
        """A configured user_id is replaced by the account id."""
        query = build_query({"user_id": "someone-else"}, "me")
        assert query.params["user_id"] == "me"

    def test_page_options(self):
        """per_page is honored and page is ignored."""
        query = build_query({"per_page": 50, "page": 7}, "me")

        assert query.per_page == 50
        assert "page" not in query.params

    def test_modified_since(self):
        """modified_since selects the updated-since shape."""
        query = build_query({"modified_since": "1d"}, "me", now=NOW)

        assert query.min_date == NOW - 86400
        assert query.params == {}
        assert query.strategy == TraversalStrategy.REVERSE_SLURP

    def test_modified_since_with_per_page(self):
        """per_page may accompany modified_since."""
        query = build_query({"modified_since": "1d", "per_page": 10}, "me", now=NOW)
        assert query.per_page == 10

    def test_modified_since_conflict(self):
        """modified_since cannot be combined with other search keys."""
        with pytest.raises(ConfigurationError):
            build_query({"modified_since": "1d", "tags": "cat"}, "me", now=NOW)

    def test_modified_since_invalid(self):
        """Bad modified_since values are configuration errors."""
        with pytest.raises(ConfigurationError):
            build_query({"modified_since": "soon"}, "me", now=NOW)

    @pytest.mark.parametrize("per_page", ["many", None, "", 0, -5])
    def test_invalid_per_page(self, per_page):
        """Non-numeric or non-positive page sizes are configuration errors."""
        with pytest.raises(ConfigurationError, match="per_page"):
            build_query({"per_page": per_page}, "me", now=NOW)

    def test_numeric_string_per_page(self):
        """Page sizes written as quoted numbers are accepted."""
        assert build_query({"per_page": "50"}, "me", now=NOW).per_page == 50
