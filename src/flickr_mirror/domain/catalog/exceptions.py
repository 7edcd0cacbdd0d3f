"""Flickr-specific exceptions for error handling."""


class FlickrError(Exception):
    """Base exception for Flickr catalog operations."""

    pass


class AuthenticationError(FlickrError):
    """Raised when Flickr authentication fails."""

    pass


class CatalogError(FlickrError):
    """Raised when a catalog response failed or could not be parsed."""

    def __init__(self, method: str, message: str, code: int | None = None):
        self.method = method
        self.code = code
        super().__init__(f"{method}: {message}")
