"""Services for feed_sync."""

from .feed_discovery import discover_feeds, find_feed_links
from .feed_parser import detect_format, extract_lead_image, parse_feed
from .fetcher import fetch_document
from .normalizer import dedup_key, select_new_articles
from .scraper import extract_article_content, scrape_article
from .sync import FeedSyncService

__all__ = [
    "FeedSyncService",
    "dedup_key",
    "detect_format",
    "discover_feeds",
    "extract_article_content",
    "extract_lead_image",
    "fetch_document",
    "find_feed_links",
    "parse_feed",
    "scrape_article",
    "select_new_articles",
]
