"""HTML scraper service.

This module pulls the main content out of an article page so it can be
stored as the article's full content.
"""

from typing import Optional, Tuple

from bs4 import BeautifulSoup

from feed_sync.logging_config import get_logger
from feed_sync.services.feed_parser import extract_lead_image
from feed_sync.services.fetcher import Fetcher, fetch_document

# Tried in order; the first match is the article body
CONTENT_SELECTORS = [
    "article",
    "div[class*='post-content']",
    "div[class*='entry-content']",
    "div[class*='article-content']",
    "div[class*='content']",
]

STRIPPED_TAGS = ["script", "style", "iframe", "noscript"]


def extract_article_content(html: str, url: str) -> Optional[Tuple[str, Optional[str]]]:
    """Extract the main content of an article page.

    Args:
        html: Page HTML
        url: Page URL, used to resolve the lead image

    Returns:
        Tuple of (content_html, lead_image_url), or None if no content
        container was found
    """
    soup = BeautifulSoup(html, "lxml")

    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            break
    else:
        return None

    for tag in node.find_all(STRIPPED_TAGS):
        tag.decompose()

    content = node.decode_contents().strip()
    if not content:
        return None

    return content, extract_lead_image(content, base_url=url)


async def scrape_article(url: str, fetch: Optional[Fetcher] = None) -> Optional[Tuple[str, Optional[str]]]:
    """Fetch an article page and extract its main content.

    Args:
        url: URL of the article page
        fetch: Optional fetch callable, defaults to fetch_document

    Returns:
        Tuple of (content_html, lead_image_url), or None if the page has no
        recognizable content container

    Raises:
        FetchError: If the page cannot be fetched
    """
    logger = get_logger(__name__)
    logger.info(f"Scraping article: {url}")

    fetch = fetch or fetch_document
    html = await fetch(url)

    extracted = extract_article_content(html, url)
    if extracted is None:
        logger.warning(f"No content container found on {url}")

    return extracted
