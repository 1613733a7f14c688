import time

from multisearch.backends.base import SearchBackend, SearchResponse
from multisearch.backends.mapping import TAVILY_FIELDS, map_results
from multisearch.config import BackendConfig
from multisearch.errors import SearchError
from multisearch.observability.logger import get_logger

log = get_logger("backends.tavily")

_CONFIG_ERRORS = {"MissingAPIKeyError", "InvalidAPIKeyError", "ForbiddenError"}


def _keep(raw: dict) -> bool:
    has_heading = raw.get("title") is not None or raw.get("url") is not None
    has_body = raw.get("title") is not None or raw.get("content") is not None or raw.get("snippet") is not None
    return has_heading and has_body


class TavilyBackend(SearchBackend):
    docs_url = "https://docs.tavily.com/"

    def __init__(self, config: BackendConfig, client=None):
        super().__init__(config)
        self._client = client

    def _get_client(self):
        if self._client is None:
            from tavily import AsyncTavilyClient

            self._client = AsyncTavilyClient(api_key=self.api_key())
        return self._client

    async def search(self, query: str, limit: int | None = None, include_raw: bool = False) -> SearchResponse:
        client = self._get_client()
        start = time.monotonic()
        try:
            response = await client.search(
                query=query,
                max_results=limit or self.config.default_limit,
                search_depth=self.config.search_depth,
                include_answer=False,
                include_raw_content=False,
                include_images=False,
            )
        except SearchError:
            raise
        except Exception as e:
            reason = "config_error" if type(e).__name__ in _CONFIG_ERRORS else "api_error"
            log.warning("tavily_error", backend=self.id, error=str(e))
            raise SearchError(self.id, reason, str(e)) from e

        results = response.get("results") if isinstance(response, dict) else None
        if not isinstance(results, list):
            self.fail("api_error", "Tavily response has no results list")

        items = map_results(results, self.id, TAVILY_FIELDS, keep=_keep)
        return SearchResponse(
            backend_id=self.id,
            items=items,
            raw=response if include_raw else None,
            took_ms=int((time.monotonic() - start) * 1000),
        )
