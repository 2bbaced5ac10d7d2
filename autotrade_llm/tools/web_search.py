"""
Web search via the Brave Search API.

Results come back as short text blocks for the model. Failures never raise;
they are returned as explanatory strings.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from autotrade_llm.utils.retry import RetryPolicy, extract_status

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Web search unavailable - API key not configured."
RATE_LIMITED_MESSAGE = "Web search is temporarily rate limited. Try again later or rely on price data."
FAILED_MESSAGE = "Web search failed. Continue with the information you already have."


class WebSearchClient:
    """Brave Search client returning model-readable summaries"""

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = "https://api.search.brave.com/res/v1/web/search",
        result_count: int = 5,
        max_results: int = 3,
        timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.result_count = result_count
        self.max_results = max_results
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = session or requests.Session()

    def _fetch(self, query: str) -> Dict[str, Any]:
        response = self.session.get(
            self.endpoint,
            params={"q": query, "count": self.result_count},
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.api_key,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def format_results(self, payload: Dict[str, Any]) -> str:
        results: List[Dict[str, Any]] = (payload.get("web") or {}).get("results") or []
        if not results:
            return "No search results found."

        blocks = []
        for result in results[:self.max_results]:
            host = urlparse(result.get("url", "")).netloc or "unknown"
            blocks.append(
                f"• {result.get('title', 'Untitled')}\n"
                f"  {result.get('description', '')}\n"
                f"  Source: {host}"
            )
        return "\n\n".join(blocks)

    async def search(self, query: str) -> str:
        """
        Search the web.

        Returns:
            Formatted top results, or a message explaining why there are none
        """
        if not self.api_key:
            logger.warning("Web search requested but no API key is configured")
            return UNAVAILABLE_MESSAGE

        logger.info(f"Web search: {query!r}")
        try:
            payload = await self.retry_policy.run(
                lambda: asyncio.to_thread(self._fetch, query),
                description="brave.web_search",
            )
        except Exception as e:
            if extract_status(e) == 429:
                logger.warning(f"Web search rate limited for {query!r}")
                return RATE_LIMITED_MESSAGE
            logger.error(f"Web search failed for {query!r}: {e}")
            return FAILED_MESSAGE

        return self.format_results(payload)
