"""Database storage for feed_sync.

This module provides async SQLite database operations for managing feeds and articles.
Database location: ~/.feed_sync/feed_sync.db (or FEED_SYNC_DB_PATH env var)

Every write that changes the set of articles or their read state also
recomputes the owning feed's unread_count before committing.
"""

import asyncio
import json
import os
import weakref
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Set, Tuple

import aiosqlite

from feed_sync.models.schemas import Article, Feed, FeedFormat


def _get_db_path() -> Path:
    """Get the database path, respecting FEED_SYNC_DB_PATH env var for testing."""
    env_path = os.environ.get("FEED_SYNC_DB_PATH")
    if env_path:
        return Path(env_path)
    return Path.home() / ".feed_sync" / "feed_sync.db"


# Singleton connection
_db_connection: Optional[aiosqlite.Connection] = None

# One write lock per connection so transactions from concurrent refreshes never interleave
_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = weakref.WeakKeyDictionary()

# Columns update_feed may touch
FEED_UPDATABLE_COLUMNS = {
    "title",
    "description",
    "website_url",
    "image_url",
    "format",
    "enabled",
    "refresh_interval_minutes",
    "last_fetched",
    "last_error",
}


async def get_database() -> aiosqlite.Connection:
    """Get or create a singleton database connection.

    Returns:
        Active database connection
    """
    global _db_connection

    if _db_connection is None:
        db_path = _get_db_path()
        # Ensure directory exists
        db_path.parent.mkdir(parents=True, exist_ok=True)

        _db_connection = await aiosqlite.connect(db_path)
        _db_connection.row_factory = aiosqlite.Row
        await init_database(_db_connection)

    return _db_connection


async def init_database(db: Optional[aiosqlite.Connection] = None) -> None:
    """Initialize database tables if they don't exist.

    Args:
        db: Optional database connection (uses singleton if not provided)
    """
    if db is None:
        db = await get_database()

    await db.execute("PRAGMA foreign_keys = ON")
    await db.create_function("casefold", 1, _casefold, deterministic=True)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS feeds (
            id INTEGER PRIMARY KEY,
            url TEXT NOT NULL UNIQUE COLLATE NOCASE,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            website_url TEXT,
            image_url TEXT,
            format TEXT NOT NULL DEFAULT 'rss',
            enabled BOOLEAN NOT NULL DEFAULT TRUE,
            refresh_interval_minutes INTEGER,
            last_fetched TIMESTAMP,
            last_error TEXT,
            unread_count INTEGER NOT NULL DEFAULT 0
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS articles (
            id INTEGER PRIMARY KEY,
            feed_id INTEGER NOT NULL,
            source_id TEXT NOT NULL,
            title TEXT NOT NULL,
            url TEXT NOT NULL DEFAULT '',
            summary TEXT NOT NULL DEFAULT '',
            content TEXT,
            published_date TIMESTAMP,
            discovered_date TIMESTAMP,
            authors TEXT NOT NULL DEFAULT '[]',
            categories TEXT NOT NULL DEFAULT '[]',
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            read_date TIMESTAMP,
            is_bookmarked BOOLEAN NOT NULL DEFAULT FALSE,
            bookmark_date TIMESTAMP,
            has_full_content BOOLEAN NOT NULL DEFAULT FALSE,
            full_content_fetched_date TIMESTAMP,
            image_url TEXT,
            UNIQUE (feed_id, source_id),
            FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
        )
    """)

    # Create indexes for faster lookups
    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_articles_feed_id ON articles(feed_id)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_articles_feed_url ON articles(feed_id, url)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_articles_is_read ON articles(is_read)
    """)

    await db.commit()


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _write_lock(db: aiosqlite.Connection) -> asyncio.Lock:
    lock = _write_locks.get(db)
    if lock is None:
        lock = asyncio.Lock()
        _write_locks[db] = lock
    return lock


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, FeedFormat):
        return value.value
    return value


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_feed(row: aiosqlite.Row) -> Feed:
    return Feed(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        website_url=row["website_url"],
        image_url=row["image_url"],
        format=FeedFormat(row["format"]),
        enabled=bool(row["enabled"]),
        refresh_interval_minutes=row["refresh_interval_minutes"],
        last_fetched=_from_db(row["last_fetched"]),
        last_error=row["last_error"],
        unread_count=row["unread_count"],
    )


def _row_to_article(row: aiosqlite.Row) -> Article:
    return Article(
        id=row["id"],
        feed_id=row["feed_id"],
        source_id=row["source_id"],
        title=row["title"],
        url=row["url"],
        summary=row["summary"],
        content=row["content"],
        published_date=_from_db(row["published_date"]),
        discovered_date=_from_db(row["discovered_date"]),
        authors=json.loads(row["authors"]),
        categories=json.loads(row["categories"]),
        is_read=bool(row["is_read"]),
        read_date=_from_db(row["read_date"]),
        is_bookmarked=bool(row["is_bookmarked"]),
        bookmark_date=_from_db(row["bookmark_date"]),
        has_full_content=bool(row["has_full_content"]),
        full_content_fetched_date=_from_db(row["full_content_fetched_date"]),
        image_url=row["image_url"],
    )


async def _recompute_unread_count(db: aiosqlite.Connection, feed_id: int) -> None:
    await db.execute(
        """
        UPDATE feeds SET unread_count = (
            SELECT COUNT(*) FROM articles WHERE feed_id = ? AND is_read = 0
        )
        WHERE id = ?
        """,
        (feed_id, feed_id),
    )


async def add_feed(feed: Feed) -> Feed:
    """Add a new feed to the database.

    Args:
        feed: Feed to insert (its id is ignored)

    Returns:
        The stored Feed with its id set

    Raises:
        ValueError: If a feed with the same URL already exists
    """
    db = await get_database()

    async with _write_lock(db):
        try:
            cursor = await db.execute(
                """
                INSERT INTO feeds (url, title, description, website_url, image_url,
                                   format, enabled, refresh_interval_minutes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    feed.url,
                    feed.title,
                    feed.description,
                    feed.website_url,
                    feed.image_url,
                    feed.format.value,
                    feed.enabled,
                    feed.refresh_interval_minutes,
                ),
            )
            await db.commit()
        except aiosqlite.IntegrityError as e:
            await db.rollback()
            raise ValueError(f"Feed with URL '{feed.url}' already exists") from e

    return await get_feed(cursor.lastrowid)


async def get_feed(feed_id: int) -> Optional[Feed]:
    """Get a feed by its id.

    Args:
        feed_id: ID of the feed

    Returns:
        Feed object if found, None otherwise
    """
    db = await get_database()

    cursor = await db.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,))
    row = await cursor.fetchone()

    return _row_to_feed(row) if row else None


async def get_feed_by_url(url: str) -> Optional[Feed]:
    """Get a feed by its subscription URL (case-insensitive).

    Args:
        url: Feed URL

    Returns:
        Feed object if found, None otherwise
    """
    db = await get_database()

    cursor = await db.execute("SELECT * FROM feeds WHERE url = ? COLLATE NOCASE", (url,))
    row = await cursor.fetchone()

    return _row_to_feed(row) if row else None


async def list_feeds(enabled_only: bool = False) -> List[Feed]:
    """List feeds ordered by title.

    Args:
        enabled_only: Only return enabled feeds

    Returns:
        List of Feed objects
    """
    db = await get_database()

    query = "SELECT * FROM feeds"
    if enabled_only:
        query += " WHERE enabled = 1"
    query += " ORDER BY title COLLATE NOCASE, id"

    cursor = await db.execute(query)

    feeds = []
    async for row in cursor:
        feeds.append(_row_to_feed(row))

    return feeds


async def update_feed(feed_id: int, **fields: Any) -> Optional[Feed]:
    """Update feed columns.

    Args:
        feed_id: ID of the feed
        **fields: Column values, restricted to FEED_UPDATABLE_COLUMNS

    Returns:
        Updated Feed object if found, None otherwise
    """
    unknown = set(fields) - FEED_UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update feed columns: {', '.join(sorted(unknown))}")

    db = await get_database()

    if fields:
        assignments = ", ".join(f"{column} = ?" for column in fields)
        async with _write_lock(db):
            await db.execute(
                f"UPDATE feeds SET {assignments} WHERE id = ?",
                [_to_db(v) for v in fields.values()] + [feed_id],
            )
            await db.commit()

    return await get_feed(feed_id)


async def remove_feed(feed_id: int) -> Tuple[bool, int]:
    """Remove a feed and all its articles.

    Args:
        feed_id: ID of the feed to remove

    Returns:
        Tuple of (success, article_count_deleted)
    """
    db = await get_database()

    async with _write_lock(db):
        cursor = await db.execute("SELECT id FROM feeds WHERE id = ?", (feed_id,))
        if await cursor.fetchone() is None:
            return (False, 0)

        cursor = await db.execute(
            "SELECT COUNT(*) as count FROM articles WHERE feed_id = ?", (feed_id,)
        )
        count_row = await cursor.fetchone()
        article_count = count_row["count"]

        # Explicit delete in case foreign keys are disabled on this connection
        await db.execute("DELETE FROM articles WHERE feed_id = ?", (feed_id,))
        await db.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
        await db.commit()

    return (True, article_count)


async def get_article_keys(feed_id: int) -> Tuple[Set[str], Set[str]]:
    """Get the dedup keys and non-empty URLs already stored for a feed.

    Args:
        feed_id: ID of the feed

    Returns:
        Tuple of (source_ids, urls)
    """
    db = await get_database()

    cursor = await db.execute(
        "SELECT source_id, url FROM articles WHERE feed_id = ?", (feed_id,)
    )

    source_ids: Set[str] = set()
    urls: Set[str] = set()
    async for row in cursor:
        source_ids.add(row["source_id"])
        if row["url"]:
            urls.add(row["url"])

    return source_ids, urls


async def insert_articles(feed_id: int, articles: List[Article]) -> int:
    """Insert new articles for a feed, skipping any whose key already exists.

    All inserts and the unread count update are committed together; on any
    failure (including cancellation) nothing is written.

    Args:
        feed_id: ID of the feed these articles belong to
        articles: Articles to insert

    Returns:
        Number of articles actually inserted
    """
    db = await get_database()
    added_count = 0

    async with _write_lock(db):
        try:
            for article in articles:
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO articles (
                        feed_id, source_id, title, url, summary, content,
                        published_date, discovered_date, authors, categories,
                        is_read, is_bookmarked, has_full_content, image_url
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, 0, ?)
                    """,
                    (
                        feed_id,
                        article.source_id,
                        article.title,
                        article.url,
                        article.summary,
                        article.content,
                        _to_db(article.published_date),
                        _to_db(article.discovered_date or _now()),
                        json.dumps(article.authors),
                        json.dumps(article.categories),
                        article.image_url,
                    ),
                )
                if cursor.rowcount == 1:
                    added_count += 1

            await _recompute_unread_count(db, feed_id)
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

    return added_count


async def get_article(article_id: int) -> Optional[Article]:
    """Get an article by its id.

    Args:
        article_id: ID of the article

    Returns:
        Article object if found, None otherwise
    """
    db = await get_database()

    cursor = await db.execute("SELECT * FROM articles WHERE id = ?", (article_id,))
    row = await cursor.fetchone()

    return _row_to_article(row) if row else None


async def list_articles(
    feed_id: Optional[int] = None,
    include_read: bool = False,
    bookmarked_only: bool = False,
    limit: int = 50,
) -> List[Article]:
    """List articles with optional filters.

    Args:
        feed_id: Optional feed id to filter by
        include_read: Whether to include read articles (default: False)
        bookmarked_only: Only return bookmarked articles
        limit: Maximum number of articles to return (default: 50)

    Returns:
        List of Article objects, newest published first
    """
    db = await get_database()

    query = "SELECT * FROM articles WHERE 1=1"
    params: List[Any] = []

    if feed_id is not None:
        query += " AND feed_id = ?"
        params.append(feed_id)

    if not include_read:
        query += " AND is_read = 0"

    if bookmarked_only:
        query += " AND is_bookmarked = 1"

    query += " ORDER BY COALESCE(published_date, discovered_date) DESC, id DESC LIMIT ?"
    params.append(limit)

    cursor = await db.execute(query, params)

    articles = []
    async for row in cursor:
        articles.append(_row_to_article(row))

    return articles


async def set_article_read(article_id: int, is_read: bool) -> Optional[Article]:
    """Mark an article as read or unread and refresh its feed's unread count.

    Args:
        article_id: ID of the article
        is_read: New read state

    Returns:
        Updated Article object if found, None otherwise
    """
    db = await get_database()

    async with _write_lock(db):
        cursor = await db.execute("SELECT feed_id FROM articles WHERE id = ?", (article_id,))
        row = await cursor.fetchone()
        if row is None:
            return None

        await db.execute(
            "UPDATE articles SET is_read = ?, read_date = ? WHERE id = ?",
            (is_read, _to_db(_now()) if is_read else None, article_id),
        )
        await _recompute_unread_count(db, row["feed_id"])
        await db.commit()

    return await get_article(article_id)


async def mark_all_read(feed_id: Optional[int] = None) -> int:
    """Mark all articles as read, optionally filtered by feed.

    Args:
        feed_id: Optional feed id to filter by

    Returns:
        Number of articles marked as read
    """
    db = await get_database()
    read_date = _to_db(_now())

    async with _write_lock(db):
        if feed_id is not None:
            cursor = await db.execute(
                "UPDATE articles SET is_read = 1, read_date = ? WHERE feed_id = ? AND is_read = 0",
                (read_date, feed_id),
            )
            await _recompute_unread_count(db, feed_id)
        else:
            cursor = await db.execute(
                "UPDATE articles SET is_read = 1, read_date = ? WHERE is_read = 0",
                (read_date,),
            )
            await db.execute("UPDATE feeds SET unread_count = 0")

        await db.commit()

    return cursor.rowcount


async def set_article_bookmark(article_id: int, bookmarked: bool) -> Optional[Article]:
    """Bookmark or unbookmark an article.

    Args:
        article_id: ID of the article
        bookmarked: New bookmark state

    Returns:
        Updated Article object if found, None otherwise
    """
    db = await get_database()

    async with _write_lock(db):
        await db.execute(
            "UPDATE articles SET is_bookmarked = ?, bookmark_date = ? WHERE id = ?",
            (bookmarked, _to_db(_now()) if bookmarked else None, article_id),
        )
        await db.commit()

    return await get_article(article_id)


async def store_full_content(
    article_id: int, content: str, image_url: Optional[str] = None
) -> Optional[Article]:
    """Save fetched full content for an article.

    Args:
        article_id: ID of the article
        content: Extracted HTML content
        image_url: Lead image to set if the article has none yet

    Returns:
        Updated Article object if found, None otherwise
    """
    db = await get_database()

    async with _write_lock(db):
        await db.execute(
            """
            UPDATE articles
            SET content = ?, has_full_content = 1, full_content_fetched_date = ?,
                image_url = COALESCE(image_url, ?)
            WHERE id = ?
            """,
            (content, _to_db(_now()), image_url, article_id),
        )
        await db.commit()

    return await get_article(article_id)


async def find_articles_matching(
    terms: List[str], feed_id: Optional[int] = None
) -> List[Article]:
    """Find articles whose title, summary or content contains every term.

    Matching is case-insensitive, including non-ASCII text.

    Args:
        terms: Search terms, all of which must match
        feed_id: Optional feed id to filter by

    Returns:
        Matching Article objects in no particular order
    """
    if not terms:
        return []

    db = await get_database()

    query = "SELECT * FROM articles WHERE 1=1"
    params: List[Any] = []

    if feed_id is not None:
        query += " AND feed_id = ?"
        params.append(feed_id)

    for term in terms:
        query += (
            " AND (casefold(title) LIKE ? ESCAPE '\\' OR casefold(summary) LIKE ? ESCAPE '\\'"
            " OR casefold(COALESCE(content, '')) LIKE ? ESCAPE '\\')"
        )
        pattern = "%" + term.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        params.extend([pattern, pattern, pattern])

    cursor = await db.execute(query, params)

    articles = []
    async for row in cursor:
        articles.append(_row_to_article(row))

    return articles


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    if _db_connection is not None:
        await _db_connection.close()
        _db_connection = None
