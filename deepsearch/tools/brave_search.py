from __future__ import annotations

from typing import Any

import httpx

from deepsearch.config import settings
from deepsearch.tools.tavily_search import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_MAX_COUNT = 20

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


def _map_results(raw_results: list[dict[str, Any]]) -> list[SearchResult]:
    # Brave has no relevance score; rank position stands in for it.
    total = max(len(raw_results), 1)
    mapped: list[SearchResult] = []
    for idx, item in enumerate(raw_results):
        url = item.get("url", "")
        if not url:
            continue
        snippets = item.get("extra_snippets", []) or []
        description = (item.get("description", "") or "").strip()
        mapped.append(
            SearchResult(
                title=item.get("title", "") or url,
                url=url,
                content=description or " ".join(snippets).strip(),
                score=max(0.0, 1.0 - (idx / total)),
            )
        )
    return mapped


async def search(
    query: str,
    *,
    max_results: int = 10,
    time_range: str | None = None,
) -> list[SearchResult]:
    """Execute a Brave web search and normalize results."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {
        "q": query,
        "count": max(1, min(int(max_results), BRAVE_MAX_COUNT)),
    }
    if time_range in FRESHNESS_MAP:
        params["freshness"] = FRESHNESS_MAP[time_range]

    async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
        response = await client.get(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": settings.brave_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    return _map_results(payload.get("web", {}).get("results", []))
