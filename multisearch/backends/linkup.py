import httpx

from multisearch.backends.base import SearchResponse
from multisearch.backends.http import request_json
from multisearch.backends.mapping import LINKUP_FIELDS, map_results
from multisearch.backends.supervised import SupervisedBackend
from multisearch.config import BackendConfig
from multisearch.lifecycle.supervisor import LifecycleSupervisor

DEFAULT_ENDPOINT = "https://api.linkup.so/v1/search"

# Linkup names its depths differently from the shared search_depth setting
DEPTHS = {"basic": "standard", "advanced": "deep"}


class LinkupBackend(SupervisedBackend):
    """Linkup search API, optionally served from a local container."""

    docs_url = "https://docs.linkup.so/"

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
        api_key = self.api_key()

        data, took_ms = await request_json(
            self.id,
            "POST",
            self.config.endpoint or DEFAULT_ENDPOINT,
            client=self.client,
            json={
                "q": query,
                "depth": DEPTHS[self.config.search_depth],
                "outputType": "searchResults",
                "maxResults": limit or self.config.default_limit,
            },
            headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
        )

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            self.fail("api_error", "Linkup response has no results list")

        return SearchResponse(
            backend_id=self.id,
            items=map_results(results, self.id, LINKUP_FIELDS, keep=lambda r: r.get("url") is not None),
            raw=data if include_raw else None,
            took_ms=took_ms,
        )
