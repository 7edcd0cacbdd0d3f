"""
Flickr REST API operations.

Handles request signing, authentication checks, paginated searches, item
info, size lists and content-type probes.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from loguru import logger
from requests.exceptions import HTTPError, RequestException

from .exceptions import AuthenticationError, CatalogError
from .models import CatalogItem, MediaKind, Page, SizeLabel, SizeVariant

# Flickr REST endpoint
API_BASE_URL = "https://api.flickr.com/services/rest/"

# Extra fields requested on list calls so page items carry their timestamps
LIST_EXTRAS = "date_taken,date_upload,last_update,media,owner_name"

# Flickr error codes that mean the credentials are unusable
AUTH_ERROR_CODES = {96, 97, 98, 99, 100}

TAKEN_FORMAT = "%Y-%m-%d %H:%M:%S"


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    """Compute the legacy Flickr `api_sig` for a parameter set.

    The signature is the md5 of the secret followed by every key/value pair,
    sorted by key, concatenated without separators.
    """
    payload = api_secret + "".join(
        f"{key}{params[key]}" for key in sorted(params)
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def _content(value: Any) -> str:
    """Unwrap Flickr's {"_content": ...} text nodes."""
    if isinstance(value, dict):
        return str(value.get("_content", ""))
    if value is None:
        return ""
    return str(value)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_taken(value: Optional[str], posted: Optional[int] = None) -> Optional[datetime]:
    """Parse a Flickr 'taken' timestamp, falling back to the posted time.

    Flickr reports unknown capture dates as zeroed strings, which do not
    parse; those items are placed by upload date instead.
    """
    if value:
        try:
            return datetime.strptime(value[:19], TAKEN_FORMAT)
        except ValueError:
            pass
    if posted is not None:
        return datetime.fromtimestamp(posted, tz=timezone.utc).replace(tzinfo=None)
    return None


def parse_list_item(photo: Dict[str, Any]) -> CatalogItem:
    """Build a CatalogItem from an entry of a search/recentlyUpdated page."""
    posted = _to_int(photo.get("dateupload"))
    return CatalogItem(
        id=str(photo["id"]),
        secret=str(photo.get("secret", "")),
        title=_content(photo.get("title")),
        taken=parse_taken(photo.get("datetaken"), posted),
        posted=posted,
        last_modified=_to_int(photo.get("lastupdate")),
        media=MediaKind.from_provider(photo.get("media")),
        owner=photo.get("owner"),
        raw=photo,
    )


def parse_info(photo: Dict[str, Any]) -> CatalogItem:
    """Build a full CatalogItem from a flickr.photos.getInfo payload."""
    dates = photo.get("dates", {})
    posted = _to_int(dates.get("posted"))
    owner = photo.get("owner", {})
    tags = tuple(
        _content(tag.get("raw")) or _content(tag)
        for tag in photo.get("tags", {}).get("tag", [])
    )
    return CatalogItem(
        id=str(photo["id"]),
        secret=str(photo.get("secret", "")),
        title=_content(photo.get("title")),
        taken=parse_taken(dates.get("taken"), posted),
        posted=posted,
        last_modified=_to_int(dates.get("lastupdate")),
        media=MediaKind.from_provider(photo.get("media")),
        owner=owner.get("nsid") if isinstance(owner, dict) else owner,
        description=_content(photo.get("description")),
        tags=tags,
        original_secret=photo.get("originalsecret"),
        raw=photo,
    )


def parse_sizes(payload: Dict[str, Any]) -> Dict[SizeLabel, SizeVariant]:
    """Map a flickr.photos.getSizes payload to known size variants.

    Unknown labels (Flickr has many intermediate sizes) are ignored.
    """
    variants: Dict[SizeLabel, SizeVariant] = {}
    for size in payload.get("sizes", {}).get("size", []):
        label = SizeLabel.from_provider_label(size.get("label", ""))
        source = size.get("source")
        if label is None or not source:
            continue
        variants[label] = SizeVariant(label=label, source=source)
    return variants


def parse_page(payload: Dict[str, Any], method: str) -> Page:
    """Build a Page from a list response.

    Raises:
        CatalogError: If the payload has no usable 'photos' block
    """
    photos = payload.get("photos")
    if not isinstance(photos, dict):
        raise CatalogError(method, "response has no photos block")

    number = _to_int(photos.get("page"))
    total = _to_int(photos.get("pages"))
    if number is None or total is None:
        raise CatalogError(method, "response has no page counters")

    try:
        items = tuple(parse_list_item(photo) for photo in photos.get("photo", []))
    except (KeyError, TypeError) as e:
        raise CatalogError(method, f"malformed photo entry: {e}") from e

    # Flickr reports zero pages for an empty result set
    return Page(items=items, number=number, total_pages=max(total, 1), payload=payload)


class FlickrClient:
    """Thin client for the Flickr REST API.

    All calls are synchronous and share one requests.Session, which the
    asset fetcher reuses for downloads.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str = "",
        auth_token: str = "",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
        base_url: str = API_BASE_URL,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.base_url = base_url

    def _build_params(self, method: str, args: Dict[str, Any]) -> Dict[str, Any]:
        params = {
            "method": method,
            "api_key": self.api_key,
            "format": "json",
            "nojsoncallback": 1,
        }
        if self.auth_token:
            params["auth_token"] = self.auth_token
        params.update({k: v for k, v in args.items() if v is not None})
        if self.api_secret:
            params["api_sig"] = sign_params(params, self.api_secret)
        return params

    def api_call(self, method: str, **args: Any) -> Dict[str, Any]:
        """Call a Flickr API method and return the decoded payload.

        Raises:
            AuthenticationError: On HTTP 401/403 or a Flickr auth error code
            CatalogError: On any other HTTP, network, decoding or API failure
        """
        params = self._build_params(method, args)
        logger.debug(f"api call {method}: {args}")

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status in (401, 403):
                raise AuthenticationError(f"{method}: HTTP {status}") from e
            raise CatalogError(method, f"HTTP {status}") from e
        except RequestException as e:
            raise CatalogError(method, f"network error: {e}") from e
        except ValueError as e:
            raise CatalogError(method, f"unparseable response: {e}") from e

        if not isinstance(data, dict):
            raise CatalogError(method, "unexpected response type")

        if data.get("stat") != "ok":
            code = _to_int(data.get("code"))
            message = data.get("message", "unknown error")
            if code in AUTH_ERROR_CODES:
                raise AuthenticationError(f"{method}: {message} ({code})")
            raise CatalogError(method, message, code)

        return data

    def authenticate(self) -> str:
        """Verify credentials and return the authenticated user's id.

        Raises:
            AuthenticationError: If the credentials are missing or rejected
        """
        if not self.api_key:
            raise AuthenticationError("no Flickr API key configured")

        try:
            data = self.api_call("flickr.test.login")
        except CatalogError as e:
            raise AuthenticationError(f"login check failed: {e}") from e

        user = data.get("user", {})
        user_id = user.get("id") or user.get("nsid")
        if not user_id:
            raise AuthenticationError("login check returned no user id")

        logger.info(f"authenticated as {_content(user.get('username')) or user_id}")
        return str(user_id)

    def search(self, params: Dict[str, Any], page: int, per_page: int) -> Page:
        """Run flickr.photos.search for one page. Caller supplies owner scope."""
        method = "flickr.photos.search"
        args = {"extras": LIST_EXTRAS, **params, "page": page, "per_page": per_page}
        return parse_page(self.api_call(method, **args), method)

    def recently_updated(self, min_date: int, page: int, per_page: int) -> Page:
        """Run flickr.photos.recentlyUpdated for one page (owner implicit)."""
        method = "flickr.photos.recentlyUpdated"
        args = {"min_date": min_date, "extras": LIST_EXTRAS, "page": page, "per_page": per_page}
        return parse_page(self.api_call(method, **args), method)

    def get_info_payload(self, item_id: str, secret: str) -> Dict[str, Any]:
        data = self.api_call("flickr.photos.getInfo", photo_id=item_id, secret=secret)
        photo = data.get("photo")
        if not isinstance(photo, dict):
            raise CatalogError("flickr.photos.getInfo", "response has no photo block")
        return photo

    def get_info(self, item_id: str, secret: str) -> CatalogItem:
        """Fetch full item info."""
        return parse_info(self.get_info_payload(item_id, secret))

    def get_sizes(self, item_id: str) -> Dict[SizeLabel, SizeVariant]:
        """Fetch the size variants available for an item."""
        return parse_sizes(self.api_call("flickr.photos.getSizes", photo_id=item_id))

    def probe_content_type(self, url: str) -> Optional[str]:
        """Issue a HEAD request and return the declared Content-Type.

        Returns None on any failure; callers fall back to a generic extension.
        """
        try:
            response = self.session.head(url, allow_redirects=True, timeout=self.timeout)
            response.raise_for_status()
        except RequestException as e:
            logger.warning(f"content-type probe failed for {url}: {e}")
            return None
        return response.headers.get("Content-Type")
