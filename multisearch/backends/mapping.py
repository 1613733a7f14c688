"""Normalization of raw API result dicts into ``ResultItem``."""

from collections.abc import Callable, Iterable
from typing import Any

from multisearch.backends.base import ResultItem

DEFAULT_FIELDS: dict[str, tuple[str, ...]] = {
    "title": ("title", "name", "url"),
    "url": ("url", "link", "href"),
    "snippet": ("content", "description", "snippet", "excerpt"),
    "score": ("score", "rank", "relevance", "priority"),
}

TAVILY_FIELDS = {
    "title": ("title", "url"),
    "url": ("url",),
    "snippet": ("content", "snippet"),
    "score": ("score",),
}

BRAVE_FIELDS = {
    "title": ("title", "url"),
    "url": ("url",),
    "snippet": ("description", "snippet", "abstract"),
    "score": ("rank", "score"),
}

SEARXNG_FIELDS = {
    "title": ("title", "url"),
    "url": ("url",),
    "snippet": ("content", "description"),
    "score": ("score", "rank"),
}

LINKUP_FIELDS = {
    "title": ("name", "title", "url"),
    "url": ("url",),
    "snippet": ("content", "snippet", "description"),
    "score": ("score", "relevance"),
}


def first_match(raw: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _as_score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_result(
    raw: dict[str, Any],
    backend_id: str,
    fields: dict[str, tuple[str, ...]] | None = None,
) -> ResultItem:
    fields = {**DEFAULT_FIELDS, **(fields or {})}
    return ResultItem(
        title=str(first_match(raw, fields["title"]) or "Untitled"),
        url=str(first_match(raw, fields["url"]) or ""),
        snippet=str(first_match(raw, fields["snippet"]) or ""),
        score=_as_score(first_match(raw, fields["score"])),
        source_backend=backend_id,
    )


def map_results(
    results: Iterable[Any],
    backend_id: str,
    fields: dict[str, tuple[str, ...]] | None = None,
    keep: Callable[[dict[str, Any]], bool] | None = None,
) -> list[ResultItem]:
    """Map raw results in order, dropping non-dict entries and those ``keep`` rejects."""
    items = []
    for raw in results:
        if not isinstance(raw, dict):
            continue
        if keep is not None and not keep(raw):
            continue
        items.append(map_result(raw, backend_id, fields))
    return items


def has_title_or_url(raw: dict[str, Any]) -> bool:
    return raw.get("title") is not None or raw.get("url") is not None
