"""Article normalizer and deduplicator.

Maps parsed feed items to Article records and keeps only the ones a feed
has not stored before. Identity is scoped to the feed: the same URL in two
different feeds yields two articles.
"""

import hashlib
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from feed_sync.models.schemas import Article, ParsedItem


def dedup_key(item: ParsedItem) -> str:
    """Return the identity used to recognize an item across fetches.

    The feed-provided id wins, then the item link. Items with neither get a
    digest of their title and text so that re-fetching the same document
    still yields the same key.

    Args:
        item: Parsed feed item

    Returns:
        Non-empty dedup key
    """
    if item.source_id:
        return item.source_id

    if item.link:
        return item.link

    digest = hashlib.sha256()
    for part in (item.title, item.summary, item.content or ""):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return "sha256:" + digest.hexdigest()


def select_new_articles(
    feed_id: int,
    items: Iterable[ParsedItem],
    existing_keys: Set[str],
    existing_urls: Set[str],
    now: Optional[datetime] = None,
) -> List[Article]:
    """Build Article records for the items a feed does not have yet.

    An item keyed by its source id is new when no stored article of the feed
    has that key, even if its link moved. An item keyed by its link is new
    only when the link is neither a stored key nor a stored article URL.
    Items repeated inside one document are kept once.

    Args:
        feed_id: Owning feed
        items: Parsed items in document order
        existing_keys: Dedup keys already stored for the feed
        existing_urls: Non-empty article URLs already stored for the feed
        now: Discovery timestamp, defaults to the current time

    Returns:
        New unread articles in document order
    """
    now = now or datetime.now(timezone.utc)
    seen_keys = set(existing_keys)
    seen_urls = set(existing_urls)
    articles = []

    for item in items:
        key = dedup_key(item)

        if key in seen_keys:
            continue
        if not item.source_id and item.link and item.link in seen_urls:
            continue

        seen_keys.add(key)
        if item.link:
            seen_urls.add(item.link)

        articles.append(Article(
            id=None,
            feed_id=feed_id,
            source_id=key,
            title=item.title,
            url=item.link,
            summary=item.summary,
            content=item.content,
            published_date=item.published_date,
            discovered_date=now,
            authors=list(item.authors),
            categories=list(item.categories),
            image_url=item.image_url,
        ))

    return articles
