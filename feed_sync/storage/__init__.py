"""Storage layer for feed_sync."""

from .database import (
    get_database,
    init_database,
    close_database,
    add_feed,
    get_feed,
    get_feed_by_url,
    list_feeds,
    update_feed,
    remove_feed,
    get_article_keys,
    insert_articles,
    get_article,
    list_articles,
    set_article_read,
    mark_all_read,
    set_article_bookmark,
    store_full_content,
    find_articles_matching,
)

__all__ = [
    "get_database",
    "init_database",
    "close_database",
    "add_feed",
    "get_feed",
    "get_feed_by_url",
    "list_feeds",
    "update_feed",
    "remove_feed",
    "get_article_keys",
    "insert_articles",
    "get_article",
    "list_articles",
    "set_article_read",
    "mark_all_read",
    "set_article_bookmark",
    "store_full_content",
    "find_articles_matching",
]
