"""Feed parser service.

This module turns RSS, Atom and JSON Feed documents into a ParsedFeed.

Date policy: an item without a usable publish date (missing or in an
unrecognized format) is stamped with the time of parsing.
"""

import json
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import feedparser

from feed_sync.errors import ParseError
from feed_sync.logging_config import get_logger
from feed_sync.models.schemas import FeedFormat, ParsedFeed, ParsedItem

UNTITLED_FEED = "Untitled Feed"
UNTITLED_ITEM = "Untitled"

# First element that is not a processing instruction, comment or doctype
_ROOT_TAG = re.compile(r"<(?![?!])([A-Za-z_][\w.:-]*)")
_IMG_SRC = re.compile(r"<img\b[^>]*?\bsrc\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)

_XML_ROOTS = {
    "rss": FeedFormat.RSS,
    "rdf": FeedFormat.RSS,
    "channel": FeedFormat.RSS,
    "feed": FeedFormat.ATOM,
}


def detect_format(payload: str) -> FeedFormat:
    """Guess the format of a document from its root structure.

    Args:
        payload: Raw document text

    Returns:
        RSS, ATOM or JSON, or UNKNOWN when no feed root is present
    """
    text = payload.lstrip("\ufeff \t\r\n")

    if text.startswith("{"):
        return FeedFormat.JSON

    if text.startswith("<"):
        match = _ROOT_TAG.search(text)
        if match:
            local_name = match.group(1).split(":")[-1].lower()
            return _XML_ROOTS.get(local_name, FeedFormat.UNKNOWN)

    return FeedFormat.UNKNOWN


def parse_feed(
    payload: str,
    format: FeedFormat = FeedFormat.UNKNOWN,
    base_url: Optional[str] = None,
) -> ParsedFeed:
    """Parse a feed document.

    The document's own structure wins over the format hint, so a feed
    subscribed as RSS that switched to Atom keeps working.

    Args:
        payload: Raw document text
        format: Believed format, or UNKNOWN to auto-detect
        base_url: URL the document was fetched from, used to resolve
            relative links

    Returns:
        ParsedFeed with items in document order

    Raises:
        ParseError: If no RSS, Atom or JSON feed structure can be found
    """
    logger = get_logger(__name__)

    detected = detect_format(payload)
    if detected is FeedFormat.UNKNOWN:
        raise ParseError(
            f"No RSS, Atom or JSON feed found in document"
            f"{' from ' + base_url if base_url else ''}"
        )
    if format not in (FeedFormat.UNKNOWN, detected):
        logger.debug(f"Expected {format.value} but found {detected.value} at {base_url}")

    parsed = _PARSERS[detected](payload, base_url)
    logger.debug(f"Parsed {len(parsed.items)} items from {detected.value} feed {base_url}")
    return parsed


def extract_lead_image(html: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Return the src of the first <img> in an HTML fragment, if any."""
    if not html or not isinstance(html, str):
        return None

    match = _IMG_SRC.search(html)
    if not match:
        return None

    src = match.group(1).strip()
    return _absolute(src, base_url) if src else None


def _parse_rss(payload: str, base_url: Optional[str]) -> ParsedFeed:
    return _parse_xml(payload, base_url, FeedFormat.RSS)


def _parse_atom(payload: str, base_url: Optional[str]) -> ParsedFeed:
    return _parse_xml(payload, base_url, FeedFormat.ATOM)


def _parse_xml(payload: str, base_url: Optional[str], feed_format: FeedFormat) -> ParsedFeed:
    """Parse RSS and Atom documents through feedparser."""
    document = feedparser.parse(payload)

    if not document.get("version"):
        reason = document.get("bozo_exception") or "unrecognized root element"
        raise ParseError(f"Invalid {feed_format.value} document: {reason}")

    if document.get("bozo"):
        get_logger(__name__).info(
            f"Recovered from malformed {feed_format.value} document {base_url}: "
            f"{document.get('bozo_exception')}"
        )

    channel = document.feed
    image = channel.get("image") or {}
    image_url = image.get("href") or image.get("url") or channel.get("logo") or channel.get("icon")

    items = [_xml_item(entry, base_url) for entry in document.entries]

    return ParsedFeed(
        format=feed_format,
        title=_text(channel.get("title")) or UNTITLED_FEED,
        description=_text(channel.get("subtitle") or channel.get("description")),
        website_url=_absolute(channel.get("link"), base_url),
        image_url=_absolute(image_url, base_url),
        items=items,
    )


def _xml_item(entry: Dict[str, Any], base_url: Optional[str]) -> ParsedItem:
    content = None
    for block in entry.get("content") or []:
        value = block.get("value")
        if value:
            content = value
            break

    summary = entry.get("summary") or ""
    if content is not None and summary == content:
        summary = ""

    authors = [a.get("name") for a in entry.get("authors") or [] if a.get("name")]
    if not authors and entry.get("author"):
        authors = [entry["author"]]

    categories = [t.get("term") for t in entry.get("tags") or [] if t.get("term")]

    link = entry.get("link") or ""
    if not link:
        for candidate in entry.get("links") or []:
            if candidate.get("rel", "alternate") == "alternate" and candidate.get("href"):
                link = candidate["href"]
                break

    published = None
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        value = entry.get(field)
        if value:
            try:
                published = datetime(*value[:6], tzinfo=timezone.utc)
                break
            except (TypeError, ValueError):
                continue

    return _item(
        title=entry.get("title"),
        link=link,
        published=published,
        summary=summary,
        content=content,
        source_id=entry.get("id"),
        authors=authors,
        categories=categories,
        image_url=None,
        base_url=base_url,
    )


def _parse_json(payload: str, base_url: Optional[str]) -> ParsedFeed:
    """Parse a JSON Feed (https://jsonfeed.org) document."""
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise ParseError(f"Invalid JSON feed: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ParseError("Invalid JSON feed: no items array")

    items = []
    for raw in data["items"]:
        if not isinstance(raw, dict):
            continue

        authors = [_text(a.get("name")) for a in _list(raw.get("authors")) if isinstance(a, dict)]
        if not any(authors) and isinstance(raw.get("author"), dict):
            authors = [_text(raw["author"].get("name"))]

        content = _text(raw.get("content_html")) or _text(raw.get("content_text"))
        source_id = raw.get("id")

        items.append(_item(
            title=raw.get("title"),
            link=_text(raw.get("url")) or _text(raw.get("external_url")),
            published=_parse_date(raw.get("date_published") or raw.get("date_modified")),
            summary=_text(raw.get("summary")),
            content=content,
            source_id=str(source_id) if isinstance(source_id, (str, int)) else None,
            authors=[a for a in authors if a],
            categories=[str(t) for t in _list(raw.get("tags")) if isinstance(t, (str, int)) and str(t)],
            image_url=_text(raw.get("image")) or _text(raw.get("banner_image")),
            base_url=base_url,
        ))

    return ParsedFeed(
        format=FeedFormat.JSON,
        title=_text(data.get("title")) or UNTITLED_FEED,
        description=_text(data.get("description")),
        website_url=_absolute(data.get("home_page_url"), base_url),
        image_url=_absolute(data.get("icon") or data.get("favicon"), base_url),
        items=items,
    )


_PARSERS: Dict[FeedFormat, Callable[[str, Optional[str]], ParsedFeed]] = {
    FeedFormat.RSS: _parse_rss,
    FeedFormat.ATOM: _parse_atom,
    FeedFormat.JSON: _parse_json,
}


def _item(
    title: Optional[str],
    link: str,
    published: Optional[datetime],
    summary: str,
    content: Optional[str],
    source_id: Optional[str],
    authors: List[str],
    categories: List[str],
    image_url: Optional[str],
    base_url: Optional[str],
) -> ParsedItem:
    image_url = _absolute(image_url, base_url) or extract_lead_image(content, base_url) \
        or extract_lead_image(summary, base_url)

    return ParsedItem(
        title=_text(title) or UNTITLED_ITEM,
        link=_absolute(link, base_url) or "",
        published_date=published or datetime.now(timezone.utc),
        summary=summary,
        content=content or None,
        source_id=source_id.strip() if source_id and source_id.strip() else None,
        authors=authors,
        categories=categories,
        image_url=image_url,
    )


def _parse_date(value: Any) -> Optional[datetime]:
    """Parse an RFC 2822 or ISO 8601 date string.

    Naive results are taken to be UTC.

    Args:
        value: Date string from the feed

    Returns:
        Timezone-aware datetime, or None if unparseable
    """
    if not value or not isinstance(value, str):
        return None

    parsed = None

    # Try RFC 2822 format (common in RSS)
    try:
        parsed = parsedate_to_datetime(value)
    except (ValueError, TypeError, IndexError):
        pass

    # Try ISO format
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _absolute(url: Optional[str], base_url: Optional[str]) -> Optional[str]:
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if base_url:
        return urljoin(base_url, url)
    return url
