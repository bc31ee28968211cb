"""Bulk page scraping with per-URL failure isolation.

``PageScraper.bulk_crawl`` fetches every URL concurrently and always returns
one result per URL in request order. A URL that is blocked by robots.txt,
times out or returns an error is reported as ``success=False`` with an error
message; it never fails the other URLs or the call as a whole.
"""

import asyncio
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from urllib.parse import urlsplit
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from deepsearch.app.core.config import settings
from deepsearch.app.core.http_client import create_http_client, get_http_client
from deepsearch.app.core.logging import get_logger
from deepsearch.app.tools.retry import RetryPolicy, with_retry

logger = get_logger(__name__)

# Elements that never carry article content
NOISE_TAGS = [
    "script", "style", "noscript", "template", "svg", "iframe",
    "nav", "header", "footer", "aside", "form",
]

ROBOTS_BLOCKED_ERROR = "Blocked by robots.txt"


class ScrapeParams(BaseModel):
    urls: List[str] = Field(
        ...,
        description="The URLs to scrape for full content",
    )


class ScrapeResult(BaseModel):
    url: str
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


class BulkScrapeResponse(BaseModel):
    success: bool  # True only when every URL succeeded
    results: List[ScrapeResult]


class UnsupportedContentError(Exception):
    """Raised for responses that are neither HTML nor plain text."""


def extract_main_text(html: str, max_chars: Optional[int] = None) -> str:
    """Extract readable text from an HTML document.

    Prefers ``<article>``, then ``<main>``, then the whole body, after
    dropping scripts, navigation and other boilerplate.
    """
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(NOISE_TAGS):
        tag.decompose()

    root = (
        soup.find("article")
        or soup.find("main")
        or soup.find(attrs={"role": "main"})
        or soup.body
        or soup
    )
    text = root.get_text("\n", strip=True)
    text = re.sub(r"\n{3,}", "\n\n", text)

    title = soup.title.get_text(strip=True) if soup.title else ""
    if title and not text.startswith(title):
        text = f"# {title}\n\n{text}"

    return truncate(text, max_chars)


def truncate(text: str, max_chars: Optional[int]) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "\n\n[truncated]"


class PageScraper:
    """Fetches pages and extracts their main text.

    Args:
        http_client: Optional client. Defaults to the shared application
            client, or a short-lived client when none is initialized.
        retry_policy: Backoff policy for transient fetch failures.
        concurrency: Maximum number of pages fetched at once.
        max_content_chars: Per-page content limit.
        respect_robots: Skip pages disallowed by the site's robots.txt.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: Optional[int] = None,
        max_content_chars: Optional[int] = None,
        respect_robots: bool = True,
        user_agent: Optional[str] = None,
    ):
        self._http_client = http_client
        self.retry_policy = retry_policy or RetryPolicy(max_retries=settings.scrape_max_retries)
        self.concurrency = concurrency or settings.scrape_concurrency
        self.max_content_chars = max_content_chars or settings.scrape_max_content_chars
        self.respect_robots = respect_robots
        self.user_agent = user_agent or settings.scrape_user_agent

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        client = self._http_client
        if client is None:
            try:
                client = get_http_client()
            except RuntimeError:
                client = None
        if client is not None:
            yield client
            return
        async with create_http_client(timeout=settings.scrape_timeout) as client:
            yield client

    async def _is_allowed(self, client: httpx.AsyncClient, url: str) -> bool:
        """Check robots.txt; unreachable or missing robots files allow the fetch."""
        parts = urlsplit(url)
        robots_url = f"{parts.scheme}://{parts.netloc}/robots.txt"
        try:
            resp = await client.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=settings.scrape_timeout,
            )
        except httpx.HTTPError as e:
            logger.debug(f"robots.txt unavailable for {parts.netloc}: {e}")
            return True
        if resp.status_code >= 400:
            return True

        parser = RobotFileParser()
        parser.parse(resp.text.splitlines())
        return parser.can_fetch(self.user_agent, url)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        @with_retry(self.retry_policy)
        async def fetch_page() -> httpx.Response:
            resp = await client.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.8",
                },
                timeout=settings.scrape_timeout,
                follow_redirects=True,
            )
            resp.raise_for_status()
            return resp

        resp = await fetch_page()
        content_type = resp.headers.get("content-type", "").lower()
        if "html" in content_type:
            return extract_main_text(resp.text, self.max_content_chars)
        if content_type.startswith("text/") or not content_type:
            return truncate(resp.text.strip(), self.max_content_chars)
        raise UnsupportedContentError(f"Unsupported content type: {content_type}")

    async def crawl(self, url: str, client: Optional[httpx.AsyncClient] = None) -> ScrapeResult:
        """Scrape a single URL, reporting failure as data."""
        if client is None:
            async with self._client_context() as own_client:
                return await self.crawl(url, own_client)

        try:
            if urlsplit(url).scheme not in ("http", "https"):
                raise ValueError(f"Unsupported URL: {url}")
            if self.respect_robots and not await self._is_allowed(client, url):
                return ScrapeResult(url=url, success=False, error=ROBOTS_BLOCKED_ERROR)
            content = await self._fetch(client, url)
        except httpx.HTTPStatusError as e:
            logger.info(f"Scrape failed for {url}: HTTP {e.response.status_code}")
            return ScrapeResult(url=url, success=False, error=f"HTTP {e.response.status_code}")
        except Exception as e:
            logger.info(f"Scrape failed for {url}: {type(e).__name__}: {e}")
            return ScrapeResult(url=url, success=False, error=str(e) or type(e).__name__)

        return ScrapeResult(url=url, success=True, content=content)

    async def bulk_crawl(self, urls: List[str]) -> BulkScrapeResponse:
        """Scrape all URLs concurrently; results keep the order of ``urls``."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async with self._client_context() as client:

            async def crawl_bounded(url: str) -> ScrapeResult:
                async with semaphore:
                    return await self.crawl(url, client)

            results = await asyncio.gather(*(crawl_bounded(url) for url in urls))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Scraped {succeeded}/{len(results)} pages")
        return BulkScrapeResponse(
            success=succeeded == len(results),
            results=list(results),
        )
