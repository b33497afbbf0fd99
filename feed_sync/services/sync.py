"""Feed sync service.

This module ties fetching, parsing, deduplication and storage together:
subscribing to feeds, refreshing them in bounded parallel batches and the
article state operations that keep unread counts in step.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Dict, List, Optional

from feed_sync.config import ServerConfig, get_config
from feed_sync.errors import (
    DuplicateFeedError,
    FeedSyncError,
    NotFoundError,
    ParseError,
)
from feed_sync.logging_config import get_logger
from feed_sync.models.schemas import (
    Article,
    Feed,
    FeedRefreshResult,
    ParsedFeed,
    RefreshReport,
)
from feed_sync.services.feed_discovery import (
    discover_feeds,
    discover_feeds_in_html,
    normalize_url,
)
from feed_sync.services.feed_parser import parse_feed
from feed_sync.services.fetcher import Fetcher, fetch_document
from feed_sync.services.normalizer import select_new_articles
from feed_sync.services.scraper import scrape_article
from feed_sync.storage import database


class FeedSyncService:
    """Subscribe to, refresh and read feeds.

    Refreshes run on a pool of at most ``config.max_concurrent_refreshes``
    feeds at a time. A feed is never refreshed by two tasks at once; a
    second request for the same feed waits for the first to finish.
    """

    def __init__(self, config: Optional[ServerConfig] = None, fetch: Optional[Fetcher] = None):
        self.config = config or get_config()
        self._fetch = fetch or partial(fetch_document, config=self.config)
        self._feed_locks: Dict[int, asyncio.Lock] = {}
        self.logger = get_logger(__name__)

    def _feed_lock(self, feed_id: int) -> asyncio.Lock:
        lock = self._feed_locks.get(feed_id)
        if lock is None:
            lock = asyncio.Lock()
            self._feed_locks[feed_id] = lock
        return lock

    async def _get_feed(self, feed_id: int) -> Feed:
        feed = await database.get_feed(feed_id)
        if feed is None:
            raise NotFoundError(f"Feed with id {feed_id} not found")
        return feed

    async def _get_article(self, article_id: int) -> Article:
        article = await database.get_article(article_id)
        if article is None:
            raise NotFoundError(f"Article with id {article_id} not found")
        return article

    # Subscriptions

    async def add_feed_by_url(self, url: str) -> Feed:
        """Subscribe to a feed URL or to the first feed a website advertises.

        The URL is fetched once. If it is a feed it is subscribed directly,
        otherwise it is treated as a web page and searched for feeds. The new
        feed's current articles are ingested right away.

        Args:
            url: Feed or website URL (https:// is added if the scheme is missing)

        Returns:
            The stored Feed with its unread count

        Raises:
            DuplicateFeedError: If the feed is already subscribed
            FetchError: If the URL cannot be fetched
            ParseError: If the URL is not a feed and advertises none
        """
        url = normalize_url(url)
        self.logger.info(f"Adding feed: {url}")

        await self._ensure_not_subscribed(url)
        payload = await self._fetch(url)

        try:
            parsed = parse_feed(payload, base_url=url)
            feed_url = url
            website_url = parsed.website_url
        except ParseError:
            candidates = await discover_feeds_in_html(url, payload, self._fetch)
            if not candidates:
                self.logger.info(f"{url} is not a feed and advertises no feeds")
                raise

            feed_url = candidates[0].url
            self.logger.info(f"Discovered feed {feed_url} on {url}")
            await self._ensure_not_subscribed(feed_url)
            parsed = parse_feed(await self._fetch(feed_url), candidates[0].format, base_url=feed_url)
            website_url = parsed.website_url or url

        try:
            feed = await database.add_feed(Feed(
                id=None,
                url=feed_url,
                title=parsed.title,
                description=parsed.description,
                website_url=website_url,
                image_url=parsed.image_url,
                format=parsed.format,
            ))
        except ValueError as e:
            raise DuplicateFeedError(str(e)) from e

        added = await self._ingest(feed, parsed)
        self.logger.info(f"Subscribed to {feed.url} (id={feed.id}) with {added} articles")

        return await self._get_feed(feed.id)

    async def _ensure_not_subscribed(self, url: str) -> None:
        if await database.get_feed_by_url(url) is not None:
            raise DuplicateFeedError(f"Feed with URL '{url}' is already subscribed")

    async def discover_feeds(self, site_url: str) -> List[Feed]:
        """Discover the feeds a website advertises without subscribing.

        Raises:
            DiscoveryError: If the page itself cannot be fetched
        """
        return await discover_feeds(site_url, self._fetch)

    async def update_feed_settings(
        self,
        feed_id: int,
        enabled: Optional[bool] = None,
        refresh_interval_minutes: Optional[int] = None,
        clear_refresh_interval: bool = False,
    ) -> Feed:
        """Enable/disable a feed or change its refresh interval.

        Args:
            feed_id: ID of the feed
            enabled: New enabled flag, unchanged if None
            refresh_interval_minutes: New interval in minutes, unchanged if None
            clear_refresh_interval: Fall back to the global default interval

        Returns:
            The updated Feed
        """
        await self._get_feed(feed_id)

        fields = {}
        if enabled is not None:
            fields["enabled"] = enabled
        if clear_refresh_interval:
            fields["refresh_interval_minutes"] = None
        elif refresh_interval_minutes is not None:
            if refresh_interval_minutes <= 0:
                raise ValueError("Refresh interval must be greater than zero")
            fields["refresh_interval_minutes"] = refresh_interval_minutes

        return await database.update_feed(feed_id, **fields)

    async def remove_feed(self, feed_id: int) -> int:
        """Unsubscribe from a feed and delete its articles.

        Returns:
            Number of articles deleted
        """
        async with self._feed_lock(feed_id):
            removed, article_count = await database.remove_feed(feed_id)

        if not removed:
            raise NotFoundError(f"Feed with id {feed_id} not found")

        self._feed_locks.pop(feed_id, None)
        self.logger.info(f"Removed feed {feed_id} and {article_count} articles")
        return article_count

    # Refresh

    def is_due(self, feed: Feed, now: Optional[datetime] = None) -> bool:
        """Whether a feed's refresh interval has elapsed since its last fetch."""
        if feed.last_fetched is None:
            return True

        now = now or datetime.now(timezone.utc)
        interval = feed.refresh_interval_minutes or self.config.default_refresh_interval_minutes
        return now >= feed.last_fetched + timedelta(minutes=interval)

    async def refresh_feeds(self, feed_id: Optional[int] = None, due_only: bool = False) -> RefreshReport:
        """Refresh one feed or every enabled feed.

        A failing feed never stops the batch: its error is stored on the feed
        and reported in its FeedRefreshResult.

        Args:
            feed_id: Refresh only this feed, or all feeds if None
            due_only: Skip feeds whose refresh interval has not elapsed

        Returns:
            RefreshReport with one result per refreshed feed

        Raises:
            NotFoundError: If feed_id does not exist
        """
        if feed_id is not None:
            feeds = [await self._get_feed(feed_id)]
        else:
            feeds = await database.list_feeds()

        now = datetime.now(timezone.utc)
        targets = [f for f in feeds if f.enabled and (not due_only or self.is_due(f, now))]
        self.logger.info(f"Refreshing {len(targets)} of {len(feeds)} feeds")

        semaphore = asyncio.Semaphore(self.config.max_concurrent_refreshes)

        async def refresh_with_semaphore(feed: Feed) -> FeedRefreshResult:
            async with semaphore:
                return await self.refresh_feed(feed)

        results = await asyncio.gather(*(refresh_with_semaphore(f) for f in targets))
        report = RefreshReport(results=list(results))

        self.logger.info(
            f"Refresh complete: {report.total_new_articles} new articles, "
            f"{len(report.failed)} of {report.feeds_refreshed} feeds failed"
        )
        return report

    async def refresh_feed(self, feed: Feed) -> FeedRefreshResult:
        """Fetch, parse and ingest a single feed, capturing any failure.

        Args:
            feed: Feed to refresh

        Returns:
            FeedRefreshResult with the new article count or the error
        """
        result = FeedRefreshResult(feed_id=feed.id, feed_url=feed.url)

        try:
            payload = await self._fetch(feed.url)
            parsed = parse_feed(payload, feed.format, base_url=feed.url)
            result.new_articles = await self._ingest(feed, parsed)
        except Exception as e:
            if isinstance(e, FeedSyncError):
                self.logger.warning(f"Error refreshing feed {feed.id} ({feed.url}): {e}")
            else:
                self.logger.error(f"Unexpected error refreshing feed {feed.id} ({feed.url}): {e}", exc_info=True)
            result.error = str(e) or type(e).__name__
            await self._record_error(feed, result.error)
            return result

        self.logger.info(f"Feed {feed.id} ({feed.url}): {result.new_articles} new articles")
        return result

    async def _ingest(self, feed: Feed, parsed: ParsedFeed) -> int:
        """Store a parsed document's new articles and mark the feed fetched."""
        async with self._feed_lock(feed.id):
            existing_keys, existing_urls = await database.get_article_keys(feed.id)
            new_articles = select_new_articles(feed.id, parsed.items, existing_keys, existing_urls)
            added = await database.insert_articles(feed.id, new_articles)

            await database.update_feed(
                feed.id,
                format=parsed.format,
                website_url=feed.website_url or parsed.website_url,
                image_url=feed.image_url or parsed.image_url,
                last_fetched=datetime.now(timezone.utc),
                last_error=None,
            )

        return added

    async def _record_error(self, feed: Feed, error: str) -> None:
        try:
            await database.update_feed(feed.id, last_error=error)
        except Exception as e:
            self.logger.error(f"Could not record error for feed {feed.id}: {e}")

    # Articles

    async def mark_article_read(self, article_id: int, is_read: bool = True) -> Article:
        """Set an article's read state; the feed's unread count follows."""
        article = await self._get_article(article_id)

        async with self._feed_lock(article.feed_id):
            updated = await database.set_article_read(article_id, is_read)

        if updated is None:
            raise NotFoundError(f"Article with id {article_id} not found")
        return updated

    async def mark_all_read(self, feed_id: Optional[int] = None) -> int:
        """Mark every unread article read, in one feed or everywhere.

        Returns:
            Number of articles marked as read
        """
        if feed_id is None:
            return await database.mark_all_read()

        await self._get_feed(feed_id)
        async with self._feed_lock(feed_id):
            return await database.mark_all_read(feed_id)

    async def bookmark_article(self, article_id: int, bookmarked: bool = True) -> Article:
        await self._get_article(article_id)
        return await database.set_article_bookmark(article_id, bookmarked)

    async def fetch_full_content(self, article_id: int) -> Article:
        """Download an article's page and store its main content.

        The article is returned unchanged when the page has no recognizable
        content container.

        Raises:
            NotFoundError: If the article does not exist
            FeedSyncError: If the article has no URL
            FetchError: If the page cannot be fetched
        """
        article = await self._get_article(article_id)
        if not article.url:
            raise FeedSyncError(f"Article with id {article_id} has no URL")

        extracted = await scrape_article(article.url, self._fetch)
        if extracted is None:
            return article

        content, image_url = extracted
        return await database.store_full_content(article_id, content, image_url)

    async def search_articles(self, query: str, feed_id: Optional[int] = None) -> List[Article]:
        """Find articles containing every word of a query.

        Results are ordered by number of occurrences, then newest first.
        """
        terms = query.casefold().split()
        if not terms:
            return []

        candidates = await database.find_articles_matching(terms, feed_id)

        scored = []
        for article in candidates:
            haystacks = [
                article.title.casefold(),
                article.summary.casefold(),
                (article.content or "").casefold(),
            ]
            if not all(any(term in h for h in haystacks) for term in terms):
                continue
            score = sum(h.count(term) for term in terms for h in haystacks)
            scored.append((score, article))

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        scored.sort(key=lambda pair: (pair[0], pair[1].published_date or epoch), reverse=True)
        return [article for _, article in scored]
