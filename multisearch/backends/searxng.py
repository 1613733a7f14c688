import httpx

from multisearch.backends.base import SearchResponse
from multisearch.backends.http import request_json
from multisearch.backends.mapping import SEARXNG_FIELDS, has_title_or_url, map_results
from multisearch.backends.supervised import SupervisedBackend
from multisearch.config import BackendConfig
from multisearch.lifecycle.supervisor import LifecycleSupervisor

DEFAULT_ENDPOINT = "http://localhost:8888/search"


class SearxngBackend(SupervisedBackend):
    """Self-hosted SearXNG instance running in a local container."""

    docs_url = "https://docs.searxng.org/"
    requires_api_key = False

    def __init__(
        self,
        config: BackendConfig,
        supervisor: LifecycleSupervisor | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, supervisor)
        self.client = client

    async def search(self, query: str, limit: int | None = None, include_raw: bool = False) -> SearchResponse:
        self.ensure_running()

        data, took_ms = await request_json(
            self.id,
            "GET",
            self.config.endpoint or DEFAULT_ENDPOINT,
            client=self.client,
            params={"q": query, "format": "json"},
            headers={"Accept": "application/json"},
        )

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            self.fail("api_error", "SearXNG response has no results list")

        items = map_results(results, self.id, SEARXNG_FIELDS, keep=has_title_or_url)
        limit = limit or self.config.default_limit
        return SearchResponse(
            backend_id=self.id,
            items=items[:limit],
            raw=data if include_raw else None,
            took_ms=took_ms,
        )
