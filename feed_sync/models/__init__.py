"""Data models for feed_sync."""

from .schemas import (
    Article,
    Feed,
    FeedFormat,
    FeedRefreshResult,
    ParsedFeed,
    ParsedItem,
    RefreshReport,
)

__all__ = [
    "Article",
    "Feed",
    "FeedFormat",
    "FeedRefreshResult",
    "ParsedFeed",
    "ParsedItem",
    "RefreshReport",
]
