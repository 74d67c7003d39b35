from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tavily import AsyncTavilyClient

from deepsearch.config import settings


@dataclass
class SearchResult:
    title: str
    url: str
    content: str
    score: float


async def search(
    query: str,
    *,
    search_depth: str = "basic",
    max_results: int = 10,
    include_answer: bool = True,
    time_range: str | None = None,
) -> list[SearchResult]:
    """Execute a Tavily web search and return structured results."""
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "include_answer": include_answer,
    }
    if time_range:
        kwargs["time_range"] = time_range

    response = await client.search(**kwargs)

    return [
        SearchResult(
            title=r.get("title", ""),
            url=r.get("url", ""),
            content=r.get("content", ""),
            score=r.get("score", 0.0),
        )
        for r in response.get("results", [])
    ]


def results_to_dicts(results: list[SearchResult]) -> list[dict[str, Any]]:
    """Convert SearchResult list to the JSON corpus shape used by the pipeline."""
    return [
        {"source": "web", "title": r.title, "url": r.url, "content": r.content, "score": r.score}
        for r in results
    ]
