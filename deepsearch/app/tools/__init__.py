"""Tools the agent can call: web search and bulk page scraping.

``build_tools`` wires both into the ``{name: Tool}`` mapping handed to the
agent loop. Scrape results are memoized in the shared store under the
``scrapePages`` namespace, so the same URL list is fetched once per TTL
across all turns.
"""

from typing import Dict, List, Optional

from deepsearch.app.core.store import StoreBackend
from deepsearch.app.services.result_cache import memoize
from deepsearch.app.tools.base import Tool
from deepsearch.app.tools.scraper import (
    BulkScrapeResponse,
    PageScraper,
    ScrapeParams,
    ScrapeResult,
)
from deepsearch.app.tools.search import SearchParams, SearchResult, SerperClient

SEARCH_TOOL_NAME = "searchWeb"
SCRAPE_TOOL_NAME = "scrapePages"


def build_tools(
    search_client: Optional[SerperClient] = None,
    scraper: Optional[PageScraper] = None,
    store: Optional[StoreBackend] = None,
) -> Dict[str, Tool]:
    """Create the tool set for one agent run."""
    search_client = search_client or SerperClient()
    scraper = scraper or PageScraper()

    scrape_pages = memoize(
        SCRAPE_TOOL_NAME,
        scraper.bulk_crawl,
        store=store,
        result_type=BulkScrapeResponse,
    )

    async def search_execute(args: SearchParams) -> List[SearchResult]:
        return await search_client.search(args.query)

    async def scrape_execute(args: ScrapeParams) -> BulkScrapeResponse:
        return await scrape_pages(args.urls)

    return {
        SEARCH_TOOL_NAME: Tool(
            name=SEARCH_TOOL_NAME,
            description="Search the web for up-to-date information. Returns titles, links, snippets and dates.",
            parameters=SearchParams,
            execute=search_execute,
        ),
        SCRAPE_TOOL_NAME: Tool(
            name=SCRAPE_TOOL_NAME,
            description="Fetch the full text content of one or more web pages by URL.",
            parameters=ScrapeParams,
            execute=scrape_execute,
        ),
    }


__all__ = [
    "BulkScrapeResponse",
    "PageScraper",
    "SCRAPE_TOOL_NAME",
    "SEARCH_TOOL_NAME",
    "ScrapeParams",
    "ScrapeResult",
    "SearchParams",
    "SearchResult",
    "SerperClient",
    "Tool",
    "build_tools",
]
