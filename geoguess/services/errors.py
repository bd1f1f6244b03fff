"""Exception types shared by the image-acquisition services."""

from __future__ import annotations


class GeoguessError(Exception):
    """Base class for every error raised by the image services."""


class MissingCredential(GeoguessError):
    """The Mapillary access token is not configured."""

    def __init__(self, message: str = "Mapillary access token missing in environment variables."):
        super().__init__(message)


class UpstreamUnavailable(GeoguessError):
    """An upstream provider answered with an unusable payload."""


class Unavailable(GeoguessError):
    """No entry could be served: the cache is empty and the on-demand lookup failed."""

    def __init__(self, message: str = "Could not fetch a random image right now. Please try again."):
        super().__init__(message)
