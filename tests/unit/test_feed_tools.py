"""Unit tests for the MCP feed tools."""

import pytest

from feed_sync.tools.feed_tools import (
    add_feed,
    bookmark_article,
    discover_feeds,
    fetch_full_content,
    list_articles,
    list_feeds,
    mark_all_read,
    mark_article_read,
    mark_article_unread,
    refresh_feeds,
    remove_feed,
    search_articles,
    set_service,
    update_feed_settings,
)

from .conftest import rss_document, rss_item


# Mark all tests as async
pytestmark = pytest.mark.anyio

FEED_URL = "https://example.com/feed.xml"


@pytest.fixture
def shared_service(service):
    set_service(service)
    yield service
    set_service(None)


@pytest.fixture
async def subscribed(shared_service, fetcher):
    fetcher.documents[FEED_URL] = rss_document([
        rss_item(guid="a", link="https://example.com/a", title="First"),
        rss_item(guid="b", link="https://example.com/b", title="Second"),
    ])
    result = await add_feed(FEED_URL)
    return result["feed"]


class TestFeedTools:
    """Tests for subscription tools."""

    async def test_add_feed(self, subscribed):
        assert subscribed["url"] == FEED_URL
        assert subscribed["format"] == "rss"
        assert subscribed["unread_count"] == 2
        assert subscribed["last_error"] is None

    async def test_add_feed_duplicate(self, subscribed):
        result = await add_feed(FEED_URL)

        assert result["success"] is False
        assert result["error_type"] == "DuplicateFeedError"

    async def test_add_feed_fetch_failure(self, shared_service):
        result = await add_feed("https://missing.example/feed")

        assert result["success"] is False
        assert result["error_type"] == "FetchError"

    async def test_discover_feeds(self, shared_service, fetcher):
        fetcher.documents["https://example.com/"] = (
            '<html><head><link rel="alternate" type="application/rss+xml" '
            'title="Posts" href="/feed.xml"></head></html>'
        )
        fetcher.documents[FEED_URL] = rss_document([])

        result = await discover_feeds("https://example.com/")

        assert result["success"] is True
        assert result["count"] == 1
        assert result["feeds"][0]["url"] == FEED_URL
        assert result["feeds"][0]["format"] == "rss"

    async def test_discover_feeds_unreachable(self, shared_service):
        result = await discover_feeds("https://missing.example/")

        assert result["success"] is False
        assert result["error_type"] == "DiscoveryError"

    async def test_list_feeds(self, subscribed):
        result = await list_feeds()

        assert result["success"] is True
        assert result["count"] == 1
        assert result["feeds"][0]["id"] == subscribed["id"]

    async def test_refresh_feeds_reports_per_feed(self, subscribed, fetcher):
        fetcher.documents[FEED_URL] = rss_document([
            rss_item(guid="a", link="https://example.com/a"),
            rss_item(guid="b", link="https://example.com/b"),
            rss_item(guid="c", link="https://example.com/c"),
        ])

        result = await refresh_feeds()

        assert result["success"] is True
        assert result["feeds_refreshed"] == 1
        assert result["total_new_articles"] == 1
        assert result["results"][0]["error"] is None

    async def test_refresh_unknown_feed(self, shared_service):
        result = await refresh_feeds(feed_id=99)

        assert result["success"] is False
        assert result["error_type"] == "NotFoundError"

    async def test_update_feed_settings(self, subscribed):
        result = await update_feed_settings(subscribed["id"], enabled="false", refresh_interval_minutes=30)

        assert result["success"] is True
        assert result["feed"]["enabled"] is False
        assert result["feed"]["refresh_interval_minutes"] == 30

    async def test_update_feed_settings_invalid_values(self, subscribed):
        bad_flag = await update_feed_settings(subscribed["id"], enabled="maybe")
        bad_interval = await update_feed_settings(subscribed["id"], refresh_interval_minutes=-5)

        assert bad_flag["success"] is False
        assert bad_interval["success"] is False

    async def test_remove_feed(self, subscribed):
        result = await remove_feed(subscribed["id"])
        missing = await remove_feed(subscribed["id"])

        assert result["success"] is True
        assert result["articles_deleted"] == 2
        assert missing["success"] is False
        assert missing["error_type"] == "NotFoundError"


class TestArticleTools:
    """Tests for article tools."""

    async def test_list_and_mark_articles(self, subscribed):
        listed = await list_articles(feed_id=subscribed["id"])
        article_id = listed["articles"][0]["id"]

        read = await mark_article_read(article_id)
        unread_only = await list_articles()
        everything = await list_articles(include_read=True)
        unread = await mark_article_unread(article_id)

        assert listed["count"] == 2
        assert read["article"]["is_read"] is True
        assert unread_only["count"] == 1
        assert everything["count"] == 2
        assert unread["article"]["is_read"] is False
        assert "content" not in listed["articles"][0]

    async def test_mark_unknown_article(self, shared_service):
        result = await mark_article_read(404)

        assert result["success"] is False
        assert result["error_type"] == "NotFoundError"

    async def test_mark_all_read(self, subscribed):
        result = await mark_all_read(subscribed["id"])
        feeds = await list_feeds()

        assert result["articles_marked_read"] == 2
        assert result["feed_filter"] == subscribed["id"]
        assert feeds["feeds"][0]["unread_count"] == 0

    async def test_bookmark_article(self, subscribed):
        listed = await list_articles()
        article_id = listed["articles"][0]["id"]

        await bookmark_article(article_id)
        bookmarked = await list_articles(bookmarked_only=True)

        assert bookmarked["count"] == 1
        assert bookmarked["articles"][0]["is_bookmarked"] is True

    async def test_fetch_full_content(self, subscribed, fetcher):
        listed = await list_articles()
        article = listed["articles"][0]
        fetcher.documents[article["url"]] = "<html><body><article><p>Whole story</p></article></body></html>"

        result = await fetch_full_content(article["id"])

        assert result["success"] is True
        assert result["article"]["has_full_content"] is True
        assert "Whole story" in result["article"]["content"]

    async def test_fetch_full_content_page_missing(self, subscribed):
        listed = await list_articles()

        result = await fetch_full_content(listed["articles"][0]["id"])

        assert result["success"] is False
        assert result["error_type"] == "FetchError"

    async def test_search_articles(self, subscribed):
        result = await search_articles("second")

        assert result["count"] == 1
        assert result["articles"][0]["title"] == "Second"
