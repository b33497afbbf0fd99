"""Exceptions raised by the feed sync engine."""

from typing import Optional


class FeedSyncError(Exception):
    """Base class for all feed_sync errors."""


class FetchError(FeedSyncError):
    """A remote document could not be retrieved."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Failed to fetch {url}: {message}")


class ParseError(FeedSyncError):
    """A document is not a recognizable RSS, Atom or JSON feed."""


class DiscoveryError(FeedSyncError):
    """The page to discover feeds from could not be fetched."""


class DuplicateFeedError(FeedSyncError):
    """A feed with the same URL is already subscribed."""


class NotFoundError(FeedSyncError):
    """No feed or article exists with the given id."""
