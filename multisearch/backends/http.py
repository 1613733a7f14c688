import time
from typing import Any

import httpx

from multisearch.errors import SearchError
from multisearch.observability.logger import get_logger

log = get_logger("backends.http")

DEFAULT_TIMEOUT = 30.0


async def request_json(
    backend_id: str,
    method: str,
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs,
) -> tuple[Any, int]:
    """Perform one HTTP call and decode its JSON body.

    Returns ``(data, took_ms)``. Transport failures, error statuses and
    undecodable bodies are raised as ``SearchError`` with a matching reason.
    """
    start = time.monotonic()
    try:
        if client is not None:
            response = await client.request(method, url, timeout=timeout, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise SearchError(backend_id, "network_error", f"Request timed out: {e}") from e
    except httpx.HTTPError as e:
        raise SearchError(backend_id, "network_error", f"Request failed: {e}") from e

    took_ms = int((time.monotonic() - start) * 1000)

    if response.status_code in (401, 403):
        raise SearchError(backend_id, "config_error",
                          f"Authentication rejected ({response.status_code})", response.status_code)
    if response.status_code in (502, 503, 504):
        raise SearchError(backend_id, "provider_unavailable",
                          f"Service unavailable ({response.status_code})", response.status_code)
    if response.is_error:
        body = response.text[:200]
        raise SearchError(backend_id, "api_error",
                          f"HTTP {response.status_code}: {body}", response.status_code)

    try:
        data = response.json()
    except ValueError as e:
        raise SearchError(backend_id, "api_error", f"Invalid JSON response: {e}", response.status_code) from e

    log.debug("http_response", backend=backend_id, status=response.status_code, took_ms=took_ms)
    return data, took_ms
