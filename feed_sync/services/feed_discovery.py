"""Feed discovery service.

This module discovers RSS/Atom/JSON feeds advertised by a website page.
"""

import asyncio
import re
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from feed_sync.errors import DiscoveryError, FeedSyncError
from feed_sync.logging_config import get_logger
from feed_sync.models.schemas import Feed, FeedFormat
from feed_sync.services.feed_parser import UNTITLED_FEED, parse_feed
from feed_sync.services.fetcher import Fetcher, fetch_document

# Feed MIME types to look for in <link> tags
FEED_MIME_TYPES = {
    "application/rss+xml": FeedFormat.RSS,
    "application/atom+xml": FeedFormat.ATOM,
    "application/feed+json": FeedFormat.JSON,
    "application/json": FeedFormat.JSON,
    "application/xml": FeedFormat.RSS,
    "text/xml": FeedFormat.RSS,
}

# Substrings that make an <a> look like a feed link
FEED_HINTS = ("rss", "feed", "atom")

DISCOVERED_FEED_TITLE = "Discovered Feed"

_SCHEME = re.compile(r"[A-Za-z][A-Za-z0-9+.-]*")


def normalize_url(url: str) -> str:
    """Strip whitespace, lowercase the scheme and prepend https:// when none is given."""
    url = url.strip()
    scheme, separator, rest = url.partition("://")
    if separator and _SCHEME.fullmatch(scheme):
        return f"{scheme.lower()}://{rest}"
    return "https://" + url


async def discover_feeds(url: str, fetch: Optional[Fetcher] = None) -> List[Feed]:
    """Discover the feeds a website advertises.

    1. Fetches the page HTML
    2. Collects <link rel="alternate"> elements with feed MIME types
    3. Adds <a> elements that look like feed links
    4. Validates every candidate by fetching and parsing it

    Args:
        url: Website URL (https:// is added if the scheme is missing)
        fetch: Optional fetch callable, defaults to fetch_document

    Returns:
        Validated candidate feeds (unsaved, id is None) in page order

    Raises:
        DiscoveryError: If the page itself cannot be fetched
    """
    logger = get_logger(__name__)
    fetch = fetch or fetch_document
    url = normalize_url(url)
    logger.info(f"Discovering feeds for: {url}")

    try:
        html = await fetch(url)
    except FeedSyncError as e:
        raise DiscoveryError(f"Failed to discover feeds at {url}: {e}") from e

    return await discover_feeds_in_html(url, html, fetch)


async def discover_feeds_in_html(page_url: str, html: str, fetch: Optional[Fetcher] = None) -> List[Feed]:
    """Find and validate feed candidates in an already fetched page.

    Args:
        page_url: URL the page was fetched from
        html: Page HTML
        fetch: Optional fetch callable, defaults to fetch_document

    Returns:
        Validated candidate feeds in page order
    """
    logger = get_logger(__name__)
    fetch = fetch or fetch_document

    candidates = find_feed_links(page_url, html)
    logger.debug(f"Found {len(candidates)} feed candidates on {page_url}")

    validated = await asyncio.gather(
        *(_validate_candidate(fetch, page_url, href, title, fmt) for href, title, fmt in candidates)
    )
    feeds = [feed for feed in validated if feed is not None]

    logger.info(f"Discovered {len(feeds)} feeds on {page_url}")
    return feeds


def find_feed_links(page_url: str, html: str) -> List[Tuple[str, str, FeedFormat]]:
    """Collect feed-like links from a page without validating them.

    Args:
        page_url: URL the page was fetched from
        html: Page HTML

    Returns:
        List of (absolute_url, title, format) tuples, <link> tags first,
        without duplicates
    """
    soup = BeautifulSoup(html, "lxml")

    base_url = page_url
    base_tag = soup.find("base", href=True)
    if base_tag:
        base_url = _resolve(page_url, base_tag["href"].strip()) or page_url

    candidates: List[Tuple[str, str, FeedFormat]] = []
    seen = set()

    def add(href: str, title: str, fmt: FeedFormat) -> None:
        absolute = _resolve(base_url, href)
        if absolute is None:
            return
        if absolute.lower() in seen:
            return
        seen.add(absolute.lower())
        candidates.append((absolute, title or DISCOVERED_FEED_TITLE, fmt))

    # Primary signal: <link rel="alternate" type="...">
    for link in soup.find_all("link", rel=lambda x: x and "alternate" in x):
        link_type = (link.get("type") or "").lower().split(";")[0].strip()
        href = (link.get("href") or "").strip()

        if href and link_type in FEED_MIME_TYPES:
            add(href, (link.get("title") or "").strip(), FEED_MIME_TYPES[link_type])

    # Secondary heuristic: anchors whose URL or text looks like a feed
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "javascript:", "mailto:")):
            continue

        text = anchor.get_text(strip=True)
        lowered_href = href.lower()
        lowered_text = text.lower()

        looks_like_feed = (
            any(hint in lowered_href for hint in FEED_HINTS)
            or lowered_href.split("#")[0].split("?")[0].endswith(".xml")
            or any(hint in lowered_text for hint in FEED_HINTS)
        )
        if looks_like_feed:
            add(href, text, FeedFormat.UNKNOWN)

    return candidates


def _resolve(base_url: str, href: str) -> Optional[str]:
    """Resolve an href to an absolute http(s) URL, or None if it is unusable."""
    try:
        absolute = urljoin(base_url, href)
        scheme = urlparse(absolute).scheme
    except ValueError:
        return None
    return absolute if scheme in ("http", "https") else None


async def _validate_candidate(
    fetch: Fetcher, page_url: str, feed_url: str, title: str, fmt: FeedFormat
) -> Optional[Feed]:
    """Fetch and parse a candidate, returning a Feed only if it is a real feed."""
    logger = get_logger(__name__)

    try:
        payload = await fetch(feed_url)
        parsed = parse_feed(payload, fmt, base_url=feed_url)
    except FeedSyncError as e:
        logger.debug(f"Skipping candidate {feed_url}: {e}")
        return None
    except Exception as e:
        logger.warning(f"Unexpected error validating candidate {feed_url}: {e}", exc_info=True)
        return None

    return Feed(
        id=None,
        url=feed_url,
        title=title if parsed.title == UNTITLED_FEED else parsed.title,
        description=parsed.description,
        website_url=page_url,
        image_url=parsed.image_url,
        format=parsed.format,
    )
