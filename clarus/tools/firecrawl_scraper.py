from __future__ import annotations

import asyncio
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import httpx

from clarus.config import settings
from clarus.errors import AcquisitionError, NonRetryableError
from clarus.services.logger import logger
from clarus.tools.provider_http import Sleep, capped_exponential_backoff, request_json

MIN_POST_TEXT_LENGTH = 20
X_HOSTS = {"x.com", "twitter.com", "www.x.com", "www.twitter.com"}
X_MIRROR_HOSTS = ("fixupx.com", "fxtwitter.com")


@dataclass(slots=True)
class ScrapedArticle:
    title: str | None
    full_text: str | None
    description: str | None
    thumbnail_url: str | None


async def scrape_article(
    url: str,
    *,
    timeout: float | None = None,
    sleep: Sleep = asyncio.sleep,
    http: httpx.AsyncClient | None = None,
) -> ScrapedArticle:
    """Scrape the main content of a page through Firecrawl."""
    result = await request_json(
        "POST",
        f"{settings.firecrawl_base_url}/v0/scrape",
        json={"url": url, "pageOptions": {"onlyMainContent": True}},
        headers={"Authorization": f"Bearer {settings.firecrawl_api_key}"},
        api_name="firecrawl",
        operation="scrape",
        label="Article content",
        timeout=timeout or settings.scrape_timeout,
        backoff=capped_exponential_backoff(1.0, 4.0),
        sleep=sleep,
        http=http,
    )
    if not isinstance(result, dict):
        logger.error(f"Scrape API returned an unexpected body: {type(result).__name__}")
        raise NonRetryableError("Article content could not be extracted (scrape)")
    data = result.get("data")
    if not result.get("success") or not isinstance(data, dict):
        logger.error(f"Scrape API indicated failure: {result.get('error')}")
        raise NonRetryableError("Article content could not be extracted (scrape)")

    metadata = data.get("metadata") or {}
    return ScrapedArticle(
        title=metadata.get("title") or None,
        full_text=data.get("markdown") or data.get("content") or None,
        description=metadata.get("description") or None,
        thumbnail_url=metadata.get("ogImage") or None,
    )


def post_url_chain(url: str) -> list[str]:
    """Mirror hosts first for x.com/twitter.com, the original URL last."""
    urls: list[str] = []
    try:
        parts = urlsplit(url)
    except ValueError:
        logger.error(f"Could not parse URL for x_post: {url}")
        return [url]
    if (parts.hostname or "").lower() in X_HOSTS:
        for host in X_MIRROR_HOSTS:
            urls.append(urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment)))
    urls.append(url)
    return urls


async def scrape_post(
    url: str,
    *,
    timeout: float | None = None,
    sleep: Sleep = asyncio.sleep,
    http: httpx.AsyncClient | None = None,
) -> ScrapedArticle:
    for candidate in post_url_chain(url):
        host = urlsplit(candidate).hostname
        try:
            scraped = await scrape_article(candidate, timeout=timeout, sleep=sleep, http=http)
        except Exception as exc:
            logger.warning(f"[x_post] Scrape failed for {host}: {exc}")
            continue
        if scraped.full_text and len(scraped.full_text) > MIN_POST_TEXT_LENGTH:
            return scraped
        logger.warning(f"[x_post] Empty result from {host}, trying next")
    raise AcquisitionError("Could not scrape X/Twitter post content from any source")
