"""Data models for feed_sync.

This module defines the core data structures for feeds, articles and the
intermediate representation produced by the feed parser.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class FeedFormat(str, Enum):
    """Syndication format of a feed document."""

    RSS = "rss"
    ATOM = "atom"
    JSON = "json"
    UNKNOWN = "unknown"


@dataclass
class Feed:
    """Represents a subscribed feed."""

    id: Optional[int]
    url: str
    title: str = "Untitled Feed"
    description: str = ""
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    format: FeedFormat = FeedFormat.RSS
    enabled: bool = True
    refresh_interval_minutes: Optional[int] = None
    last_fetched: Optional[datetime] = None
    last_error: Optional[str] = None
    unread_count: int = 0


@dataclass
class Article:
    """Represents an article ingested from a feed."""

    id: Optional[int]
    feed_id: int
    source_id: str
    title: str
    url: str
    summary: str = ""
    content: Optional[str] = None
    published_date: Optional[datetime] = None
    discovered_date: Optional[datetime] = None
    authors: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    is_read: bool = False
    read_date: Optional[datetime] = None
    is_bookmarked: bool = False
    bookmark_date: Optional[datetime] = None
    has_full_content: bool = False
    full_content_fetched_date: Optional[datetime] = None
    image_url: Optional[str] = None


@dataclass
class ParsedItem:
    """A single entry of a parsed feed document."""

    title: str
    link: str
    published_date: datetime
    summary: str = ""
    content: Optional[str] = None
    source_id: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    image_url: Optional[str] = None


@dataclass
class ParsedFeed:
    """Normalized view of an RSS, Atom or JSON feed document."""

    format: FeedFormat
    title: str
    description: str = ""
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)


@dataclass
class FeedRefreshResult:
    """Outcome of refreshing a single feed."""

    feed_id: int
    feed_url: str
    new_articles: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class RefreshReport:
    """Outcome of a refresh batch."""

    results: List[FeedRefreshResult] = field(default_factory=list)

    @property
    def total_new_articles(self) -> int:
        return sum(r.new_articles for r in self.results)

    @property
    def feeds_refreshed(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> List[FeedRefreshResult]:
        return [r for r in self.results if not r.success]
