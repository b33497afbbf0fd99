"""Feed sync MCP tools.

This module provides MCP tools for managing feed subscriptions and articles.

NOTE: Never use Optional parameters in MCP tools - they break MCP clients.
Use empty string "" for optional strings and 0 for optional integers.
"""

from typing import Any, Dict, Optional

from mcp.server.fastmcp import Context

from feed_sync.errors import FeedSyncError
from feed_sync.logging_config import get_logger
from feed_sync.models.schemas import Article, Feed
from feed_sync.services.sync import FeedSyncService
from feed_sync.storage import database

_service: Optional[FeedSyncService] = None


def get_service() -> FeedSyncService:
    """Get the shared FeedSyncService, creating it on first use."""
    global _service

    if _service is None:
        _service = FeedSyncService()

    return _service


def set_service(service: Optional[FeedSyncService]) -> None:
    """Replace the shared FeedSyncService (None resets it)."""
    global _service
    _service = service


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _feed_dict(feed: Feed) -> Dict[str, Any]:
    return {
        "id": feed.id,
        "url": feed.url,
        "title": feed.title,
        "description": feed.description,
        "website_url": feed.website_url,
        "image_url": feed.image_url,
        "format": feed.format.value,
        "enabled": feed.enabled,
        "refresh_interval_minutes": feed.refresh_interval_minutes,
        "last_fetched": _iso(feed.last_fetched),
        "last_error": feed.last_error,
        "unread_count": feed.unread_count,
    }


def _article_dict(article: Article, include_content: bool = False) -> Dict[str, Any]:
    data = {
        "id": article.id,
        "feed_id": article.feed_id,
        "title": article.title,
        "url": article.url,
        "summary": article.summary,
        "published_date": _iso(article.published_date),
        "discovered_date": _iso(article.discovered_date),
        "authors": article.authors,
        "categories": article.categories,
        "is_read": article.is_read,
        "is_bookmarked": article.is_bookmarked,
        "has_full_content": article.has_full_content,
        "image_url": article.image_url,
    }
    if include_content:
        data["content"] = article.content
    return data


def _error(e: Exception) -> Dict[str, Any]:
    return {
        "success": False,
        "error": str(e),
        "error_type": type(e).__name__,
    }


async def add_feed(url: str, ctx: Context = None) -> Dict[str, Any]:
    """Subscribe to an RSS, Atom or JSON feed.

    The URL may point at the feed itself or at a website; for a website the
    first feed it advertises is subscribed. Current articles are fetched
    immediately.

    Args:
        url: Feed or website URL (https:// is added if no scheme)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: the subscribed feed with its unread_count
        - error: string if success is False
    """
    logger = get_logger(__name__)
    logger.info(f"add_feed called: url={url}")

    try:
        feed = await get_service().add_feed_by_url(url)
    except FeedSyncError as e:
        return _error(e)

    return {
        "success": True,
        "feed": _feed_dict(feed),
    }


async def discover_feeds(url: str, ctx: Context = None) -> Dict[str, Any]:
    """List the feeds a website advertises, without subscribing.

    Every returned candidate has been fetched and parsed successfully.

    Args:
        url: Website URL (https:// is added if no scheme)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of feeds found
        - feeds: list of candidates with url, title, description, format
        - error: string if the website could not be fetched
    """
    logger = get_logger(__name__)
    logger.info(f"discover_feeds called: url={url}")

    try:
        feeds = await get_service().discover_feeds(url)
    except FeedSyncError as e:
        return _error(e)

    return {
        "success": True,
        "count": len(feeds),
        "feeds": [
            {
                "url": f.url,
                "title": f.title,
                "description": f.description,
                "website_url": f.website_url,
                "format": f.format.value,
            }
            for f in feeds
        ],
    }


async def refresh_feeds(feed_id: int = 0, due_only: bool = False, ctx: Context = None) -> Dict[str, Any]:
    """Fetch new articles for one feed or all enabled feeds.

    Articles already stored are never duplicated or modified. A feed that
    fails to refresh does not stop the others; its error is reported in
    the results and stored on the feed.

    Args:
        feed_id: Refresh only this feed (0 refreshes all enabled feeds)
        due_only: Only refresh feeds whose refresh interval has elapsed
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feeds_refreshed: number of feeds processed
        - total_new_articles: new articles across all feeds
        - results: per-feed feed_id, url, new_articles, error
    """
    logger = get_logger(__name__)
    logger.info(f"refresh_feeds called: feed_id={feed_id}, due_only={due_only}")

    try:
        report = await get_service().refresh_feeds(feed_id or None, due_only=due_only)
    except FeedSyncError as e:
        return _error(e)

    return {
        "success": True,
        "feeds_refreshed": report.feeds_refreshed,
        "total_new_articles": report.total_new_articles,
        "results": [
            {
                "feed_id": r.feed_id,
                "url": r.feed_url,
                "new_articles": r.new_articles,
                "error": r.error,
            }
            for r in report.results
        ],
    }


async def list_feeds(ctx: Context = None) -> Dict[str, Any]:
    """List all subscribed feeds with unread counts and last fetch status.

    Args:
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of feeds
        - feeds: list of feed objects
    """
    logger = get_logger(__name__)
    logger.info("list_feeds called")

    feeds = await database.list_feeds()

    return {
        "success": True,
        "count": len(feeds),
        "feeds": [_feed_dict(f) for f in feeds],
    }


async def remove_feed(feed_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Unsubscribe from a feed and delete all of its articles.

    This action cannot be undone.

    Args:
        feed_id: ID of the feed (from list_feeds)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - articles_deleted: count of articles removed
        - error: string if feed not found
    """
    logger = get_logger(__name__)
    logger.info(f"remove_feed called: feed_id={feed_id}")

    try:
        count = await get_service().remove_feed(feed_id)
    except FeedSyncError as e:
        return _error(e)

    return {
        "success": True,
        "message": f"Removed feed {feed_id} and {count} articles",
        "articles_deleted": count,
    }


async def update_feed_settings(
    feed_id: int,
    enabled: str = "",
    refresh_interval_minutes: int = 0,
    use_default_interval: bool = False,
    ctx: Context = None,
) -> Dict[str, Any]:
    """Enable or disable a feed, or change how often it is refreshed.

    Args:
        feed_id: ID of the feed
        enabled: "true" or "false" (empty string leaves it unchanged)
        refresh_interval_minutes: Custom interval in minutes (0 leaves it unchanged)
        use_default_interval: Drop the custom interval and use the global default
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: the updated feed
        - error: string if the feed is not found or a value is invalid
    """
    logger = get_logger(__name__)
    logger.info(
        f"update_feed_settings called: feed_id={feed_id}, enabled={enabled}, "
        f"refresh_interval_minutes={refresh_interval_minutes}"
    )

    enabled_flag = None
    if enabled:
        if enabled.lower() not in ("true", "false"):
            return {"success": False, "error": f"Invalid enabled value: {enabled}. Use 'true' or 'false'"}
        enabled_flag = enabled.lower() == "true"

    if refresh_interval_minutes < 0:
        return {"success": False, "error": "Refresh interval must be greater than zero"}

    try:
        feed = await get_service().update_feed_settings(
            feed_id,
            enabled=enabled_flag,
            refresh_interval_minutes=refresh_interval_minutes or None,
            clear_refresh_interval=use_default_interval,
        )
    except FeedSyncError as e:
        return _error(e)

    return {
        "success": True,
        "feed": _feed_dict(feed),
    }


async def list_articles(
    feed_id: int = 0,
    include_read: bool = False,
    bookmarked_only: bool = False,
    limit: int = 50,
    ctx: Context = None,
) -> Dict[str, Any]:
    """List articles, newest first.

    Args:
        feed_id: Only articles from this feed (0 for all feeds)
        include_read: Include articles marked as read (default: False, only unread)
        bookmarked_only: Only bookmarked articles
        limit: Maximum number of articles to return (default: 50)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of articles returned
        - articles: list of article objects
    """
    logger = get_logger(__name__)
    logger.info(
        f"list_articles called: feed_id={feed_id}, include_read={include_read}, "
        f"bookmarked_only={bookmarked_only}, limit={limit}"
    )

    articles = await database.list_articles(
        feed_id=feed_id or None,
        include_read=include_read,
        bookmarked_only=bookmarked_only,
        limit=limit,
    )

    return {
        "success": True,
        "count": len(articles),
        "articles": [_article_dict(a) for a in articles],
    }


async def mark_article_read(article_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Mark a specific article as read.

    Args:
        article_id: Database ID of the article (from list_articles response)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article: the updated article
        - error: string if article not found
    """
    logger = get_logger(__name__)
    logger.info(f"mark_article_read called: article_id={article_id}")

    try:
        article = await get_service().mark_article_read(article_id, True)
    except FeedSyncError as e:
        return _error(e)

    return {"success": True, "article": _article_dict(article)}


async def mark_article_unread(article_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Mark a specific article as unread.

    Args:
        article_id: Database ID of the article (from list_articles response)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article: the updated article
        - error: string if article not found
    """
    logger = get_logger(__name__)
    logger.info(f"mark_article_unread called: article_id={article_id}")

    try:
        article = await get_service().mark_article_read(article_id, False)
    except FeedSyncError as e:
        return _error(e)

    return {"success": True, "article": _article_dict(article)}


async def mark_all_read(feed_id: int = 0, ctx: Context = None) -> Dict[str, Any]:
    """Mark all unread articles as read, optionally only in one feed.

    Args:
        feed_id: Only mark articles from this feed (0 marks all feeds)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - articles_marked_read: count of articles updated
        - error: string if specified feed not found
    """
    logger = get_logger(__name__)
    logger.info(f"mark_all_read called: feed_id={feed_id}")

    try:
        count = await get_service().mark_all_read(feed_id or None)
    except FeedSyncError as e:
        return _error(e)

    return {
        "success": True,
        "articles_marked_read": count,
        "feed_filter": feed_id or None,
    }


async def bookmark_article(article_id: int, bookmarked: bool = True, ctx: Context = None) -> Dict[str, Any]:
    """Bookmark or unbookmark an article.

    Args:
        article_id: Database ID of the article
        bookmarked: True to bookmark, False to remove the bookmark
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article: the updated article
        - error: string if article not found
    """
    logger = get_logger(__name__)
    logger.info(f"bookmark_article called: article_id={article_id}, bookmarked={bookmarked}")

    try:
        article = await get_service().bookmark_article(article_id, bookmarked)
    except FeedSyncError as e:
        return _error(e)

    return {"success": True, "article": _article_dict(article)}


async def fetch_full_content(article_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Download an article's web page and store its main content.

    Args:
        article_id: Database ID of the article
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article: the article including its content
        - error: string if the article is unknown or the page could not be fetched
    """
    logger = get_logger(__name__)
    logger.info(f"fetch_full_content called: article_id={article_id}")

    try:
        article = await get_service().fetch_full_content(article_id)
    except FeedSyncError as e:
        return _error(e)

    return {"success": True, "article": _article_dict(article, include_content=True)}


async def search_articles(query: str, feed_id: int = 0, ctx: Context = None) -> Dict[str, Any]:
    """Search articles whose title, summary or content contain every query word.

    Args:
        query: Space-separated search words
        feed_id: Only search this feed (0 searches all feeds)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of matches
        - articles: matches, most occurrences first
    """
    logger = get_logger(__name__)
    logger.info(f"search_articles called: query={query}, feed_id={feed_id}")

    articles = await get_service().search_articles(query, feed_id or None)

    return {
        "success": True,
        "count": len(articles),
        "articles": [_article_dict(a) for a in articles],
    }


# List of feed tools for registration
feed_tools = [
    add_feed,
    discover_feeds,
    refresh_feeds,
    list_feeds,
    remove_feed,
    update_feed_settings,
    list_articles,
    mark_article_read,
    mark_article_unread,
    mark_all_read,
    bookmark_article,
    fetch_full_content,
    search_articles,
]
