"""Unit tests for article normalization and deduplication."""

from datetime import datetime, timezone

from feed_sync.models.schemas import ParsedItem
from feed_sync.services.normalizer import dedup_key, select_new_articles

PUBLISHED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def item(source_id=None, link="", title="Post", summary="", content=None, image_url=None):
    return ParsedItem(
        title=title,
        link=link,
        published_date=PUBLISHED,
        summary=summary,
        content=content,
        source_id=source_id,
        image_url=image_url,
    )


class TestDedupKey:
    """Tests for dedup key selection."""

    def test_source_id_wins(self):
        assert dedup_key(item(source_id="guid-1", link="https://example.com/1")) == "guid-1"

    def test_falls_back_to_link(self):
        assert dedup_key(item(link="https://example.com/1")) == "https://example.com/1"

    def test_synthesized_key_is_stable(self):
        first = dedup_key(item(title="Same", summary="text"))
        second = dedup_key(item(title="Same", summary="text"))

        assert first == second
        assert first.startswith("sha256:")

    def test_synthesized_key_differs_by_content(self):
        assert dedup_key(item(title="One")) != dedup_key(item(title="Two"))


class TestSelectNewArticles:
    """Tests for choosing which items become new articles."""

    def test_all_new(self):
        articles = select_new_articles(
            7, [item("a", "https://example.com/a"), item("b", "https://example.com/b")], set(), set()
        )

        assert [a.source_id for a in articles] == ["a", "b"]
        assert all(a.feed_id == 7 for a in articles)
        assert all(not a.is_read and not a.is_bookmarked and not a.has_full_content for a in articles)

    def test_existing_source_ids_skipped(self):
        items = [item("a", "https://example.com/a"), item("b", "https://example.com/b"), item("c", "https://example.com/c")]

        articles = select_new_articles(1, items, {"a", "b"}, {"https://example.com/a", "https://example.com/b"})

        assert [a.source_id for a in articles] == ["c"]

    def test_source_id_match_ignores_link_change(self):
        articles = select_new_articles(1, [item("a", "https://example.com/moved")], {"a"}, {"https://example.com/a"})

        assert articles == []

    def test_link_fallback_matches_existing_url(self):
        # Stored earlier under a guid that the feed has since dropped
        articles = select_new_articles(1, [item(link="https://example.com/a")], {"old-guid"}, {"https://example.com/a"})

        assert articles == []

    def test_link_fallback_new_url(self):
        articles = select_new_articles(1, [item(link="https://example.com/new")], set(), {"https://example.com/a"})

        assert len(articles) == 1
        assert articles[0].source_id == "https://example.com/new"
        assert articles[0].url == "https://example.com/new"

    def test_duplicates_within_document_kept_once(self):
        items = [item("a", "https://example.com/a"), item("a", "https://example.com/a2"), item(link="https://example.com/a")]

        articles = select_new_articles(1, items, set(), set())

        assert [a.source_id for a in articles] == ["a"]

    def test_discovery_timestamp_and_publish_date(self):
        now = datetime(2025, 5, 5, tzinfo=timezone.utc)

        [article] = select_new_articles(1, [item("a", "https://example.com/a")], set(), set(), now=now)

        assert article.discovered_date == now
        assert article.published_date == PUBLISHED

    def test_lead_image_carried_over(self):
        [article] = select_new_articles(
            1, [item("a", "https://example.com/a", image_url="https://cdn.example.com/x.jpg")], set(), set()
        )

        assert article.image_url == "https://cdn.example.com/x.jpg"
