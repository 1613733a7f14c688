import httpx

from multisearch.backends.base import SearchBackend, SearchResponse
from multisearch.backends.http import request_json
from multisearch.backends.mapping import BRAVE_FIELDS, map_results
from multisearch.config import BackendConfig

DEFAULT_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"


class BraveBackend(SearchBackend):
    docs_url = "https://api.search.brave.com/app/documentation"

    def __init__(self, config: BackendConfig, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.client = client

    async def search(self, query: str, limit: int | None = None, include_raw: bool = False) -> SearchResponse:
        api_key = self.api_key()
        data, took_ms = await request_json(
            self.id,
            "GET",
            self.config.endpoint or DEFAULT_ENDPOINT,
            client=self.client,
            params={"q": query, "count": limit or self.config.default_limit},
            headers={"Accept": "application/json", "X-Subscription-Token": api_key},
        )

        # Brave nests web hits under "web"; older responses put them at the top level
        web = data.get("web") if isinstance(data, dict) else None
        results = (web or {}).get("results") if isinstance(web, dict) else None
        if results is None and isinstance(data, dict):
            results = data.get("results")
        if not isinstance(results, list):
            self.fail("api_error", "Brave response has no results list")

        return SearchResponse(
            backend_id=self.id,
            items=map_results(results, self.id, BRAVE_FIELDS, keep=lambda r: r.get("url") is not None),
            raw=data if include_raw else None,
            took_ms=took_ms,
        )
