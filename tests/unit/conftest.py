"""Fixtures and document builders for unit tests."""

import json
from typing import Dict, List, Optional, Union
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from feed_sync.config import ServerConfig
from feed_sync.errors import FetchError
from feed_sync.services.sync import FeedSyncService
from feed_sync.storage.database import init_database


class FakeFetcher:
    """Serves canned documents by URL; unknown URLs fail like a 404."""

    def __init__(self, documents: Optional[Dict[str, Union[str, Exception]]] = None):
        self.documents: Dict[str, Union[str, Exception]] = dict(documents or {})
        self.calls: List[str] = []

    async def __call__(self, url: str) -> str:
        self.calls.append(url)
        document = self.documents.get(url)
        if document is None:
            raise FetchError(url, "HTTP 404", status_code=404)
        if isinstance(document, Exception):
            raise document
        return document


def rss_item(
    guid: Optional[str] = None,
    link: Optional[str] = None,
    title: Optional[str] = "Post",
    pub_date: Optional[str] = "Mon, 01 Jan 2024 12:00:00 GMT",
    description: str = "Summary",
    extra: str = "",
) -> str:
    parts = ["<item>"]
    if title is not None:
        parts.append(f"<title>{title}</title>")
    if link is not None:
        parts.append(f"<link>{link}</link>")
    if guid is not None:
        parts.append(f'<guid isPermaLink="false">{guid}</guid>')
    if pub_date is not None:
        parts.append(f"<pubDate>{pub_date}</pubDate>")
    parts.append(f"<description>{description}</description>")
    parts.append(extra)
    parts.append("</item>")
    return "".join(parts)


def rss_document(items: List[str], title: Optional[str] = "Example Blog", channel_extra: str = "") -> str:
    title_element = f"<title>{title}</title>" if title is not None else ""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    {title_element}
    <link>https://example.com/</link>
    <description>Posts about examples</description>
    {channel_extra}
    {"".join(items)}
  </channel>
</rss>
"""


def atom_document(entries: List[str], title: str = "Atom Blog") -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>{title}</title>
  <subtitle>An Atom feed</subtitle>
  <link rel="alternate" href="https://atom.example.com/"/>
  <id>urn:uuid:feed</id>
  <updated>2024-01-15T10:30:00Z</updated>
  {"".join(entries)}
</feed>
"""


def atom_entry(entry_id: str, href: str, title: str = "Atom Post", updated: str = "2024-01-15T10:30:00Z") -> str:
    return f"""<entry>
    <id>{entry_id}</id>
    <title>{title}</title>
    <link rel="alternate" href="{href}"/>
    <updated>{updated}</updated>
    <author><name>Ann Author</name></author>
    <category term="news"/>
    <summary>Atom summary</summary>
  </entry>"""


def json_document(items: List[dict], title: str = "JSON Blog") -> str:
    return json.dumps({
        "version": "https://jsonfeed.org/version/1.1",
        "title": title,
        "home_page_url": "https://json.example.com/",
        "feed_url": "https://json.example.com/feed.json",
        "items": items,
    })


HTML_PAGE = "<html><head><title>Not a feed</title></head><body><p>Hello</p></body></html>"


@pytest.fixture
async def in_memory_db():
    """Create an in-memory database for testing."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await init_database(db)

    # Patch get_database to return our in-memory connection
    with patch("feed_sync.storage.database.get_database", AsyncMock(return_value=db)):
        yield db

    await db.close()


@pytest.fixture
def config():
    return ServerConfig(
        default_refresh_interval_minutes=60,
        max_concurrent_refreshes=2,
        http_timeout=5.0,
    )


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def service(in_memory_db, config, fetcher):
    return FeedSyncService(config=config, fetch=fetcher)
