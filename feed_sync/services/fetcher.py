"""Document fetcher service.

This module retrieves feed documents and web pages over HTTP.
"""

from typing import Awaitable, Callable, Optional

import httpx

from feed_sync.config import ServerConfig, get_config
from feed_sync.errors import FetchError
from feed_sync.logging_config import get_logger

# Signature shared by fetch_document and the stubs tests inject
Fetcher = Callable[[str], Awaitable[str]]


async def fetch_document(url: str, config: Optional[ServerConfig] = None) -> str:
    """Fetch a URL and return its decoded body.

    Args:
        url: Absolute URL to GET
        config: Optional configuration supplying timeout and User-Agent

    Returns:
        Response body decoded as text

    Raises:
        FetchError: On network failure, timeout or a non-2xx status
    """
    logger = get_logger(__name__)
    config = config or get_config()
    logger.debug(f"Fetching {url}")

    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=config.http_timeout,
        headers={"User-Agent": config.user_agent},
    ) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"HTTP {status} fetching {url}")
            raise FetchError(url, f"HTTP {status}", status_code=status) from e
        except httpx.TimeoutException as e:
            logger.warning(f"Timed out fetching {url}")
            raise FetchError(url, "request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            raise FetchError(url, str(e) or type(e).__name__) from e

    return response.text
