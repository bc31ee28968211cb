"""Web search through the Serper Google Search API."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from deepsearch.app.core.config import settings
from deepsearch.app.core.http_client import create_http_client, get_http_client
from deepsearch.app.core.logging import get_logger

logger = get_logger(__name__)


class SearchParams(BaseModel):
    query: str = Field(..., min_length=1, description="The query to search the web for")


class SearchResult(BaseModel):
    title: str
    link: str
    snippet: str = ""
    date: str = "unknown"


class SerperClient:
    """Client for the Serper search endpoint.

    Errors from Serper are not caught here; they propagate to the tool call
    and abort the turn.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.serper_api_key
        self.base_url = (base_url or settings.serper_base_url).rstrip("/")
        self._http_client = http_client

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
        async with create_http_client() as client:
            yield client

    async def search(self, query: str, num: Optional[int] = None) -> List[SearchResult]:
        """Run a search and return the organic results in ranking order.

        Raises:
            ValueError: If no Serper API key is configured.
            httpx.HTTPStatusError: If Serper returns an error status.
        """
        if not self.api_key:
            raise ValueError("SERPER_API_KEY is not configured")

        payload = {"q": query, "num": num or settings.search_num_results}
        async with self._client_context() as client:
            resp = await client.post(
                f"{self.base_url}/search",
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json=payload,
            )
        resp.raise_for_status()
        data: Dict[str, Any] = resp.json()

        organic = data.get("organic") or []
        logger.debug(f"Serper returned {len(organic)} results for query: {query[:80]}")
        return [
            SearchResult(
                title=item.get("title", ""),
                link=item["link"],
                snippet=item.get("snippet", ""),
                date=item.get("date") or "unknown",
            )
            for item in organic
            if item.get("link")
        ]
