from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, MissingAPIKeyError

from clarus.config import settings
from clarus.services.logger import log_api_usage, logger

MAX_CONTENT_CHARS = 500


@dataclass(slots=True)
class SearchHit:
    title: str
    url: str
    content: str


@dataclass(slots=True)
class SearchResult:
    query: str
    answer: str | None
    results: list[SearchHit]


def normalize_query(query: str) -> str:
    query = re.sub(r"\s+", " ", query.lower().strip())
    return re.sub(r"[?.!,]+$", "", query)


@dataclass
class SearchCache:
    """Search results for a single pipeline run.

    Created by the controller per run and passed explicitly; never shared
    between requests. ``inflight`` holds provider calls still running so
    concurrent identical queries share one call.
    """

    entries: dict[str, SearchResult] = field(default_factory=dict)
    inflight: dict[str, asyncio.Task] = field(default_factory=dict)
    hits: int = 0
    api_calls: int = 0

    def get(self, query: str) -> tuple[SearchResult | None, bool]:
        key = normalize_query(query)
        if key in self.entries:
            self.hits += 1
            return self.entries[key], True
        return None, False

    def put(self, query: str, result: SearchResult) -> None:
        self.entries[normalize_query(query)] = result

    def available_sources(self) -> dict[str, str]:
        """``url -> title`` for every hit of this run that carries both."""
        sources: dict[str, str] = {}
        for result in self.entries.values():
            for hit in result.results:
                if hit.url and hit.title:
                    sources.setdefault(hit.url, hit.title)
        return sources


def _to_result(query: str, response: dict[str, Any], max_results: int) -> SearchResult:
    return SearchResult(
        query=query,
        answer=response.get("answer") or None,
        results=[
            SearchHit(
                title=r.get("title") or "",
                url=r.get("url") or "",
                content=(r.get("content") or "")[:MAX_CONTENT_CHARS],
            )
            for r in (response.get("results") or [])[:max_results]
        ],
    )


async def search(
    query: str,
    cache: SearchCache,
    *,
    max_results: int | None = None,
    max_retries: int | None = None,
    timeout: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SearchResult | None:
    """Run a Tavily search through the request-scoped cache.

    Transient failures are retried with capped exponential backoff; bad API
    keys are not. Final failure returns ``None``.
    """
    if not settings.tavily_api_key:
        return None

    cached, found = cache.get(query)
    if found:
        return cached

    key = normalize_query(query)
    task = cache.inflight.get(key)
    if task is None:
        task = asyncio.ensure_future(_fetch(query, cache, max_results, max_retries, timeout, sleep))
        cache.inflight[key] = task
        task.add_done_callback(lambda _done: cache.inflight.pop(key, None))
    else:
        cache.hits += 1
    return await asyncio.shield(task)


async def _fetch(
    query: str,
    cache: SearchCache,
    max_results: int | None,
    max_retries: int | None,
    timeout: float | None,
    sleep: Callable[[float], Awaitable[None]],
) -> SearchResult | None:
    max_results = max_results or settings.search_max_results
    retries = settings.search_max_retries if max_retries is None else max_retries
    call_timeout = timeout if timeout is not None else settings.search_timeout
    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    for attempt in range(retries + 1):
        started = time.perf_counter()
        try:
            cache.api_calls += 1
            response = await asyncio.wait_for(
                client.search(
                    query=query,
                    search_depth="basic",
                    include_answer=True,
                    include_raw_content=False,
                    max_results=max_results,
                ),
                timeout=call_timeout,
            )
        except (InvalidAPIKeyError, MissingAPIKeyError) as exc:
            log_api_usage("tavily", "search", "error", error=str(exc), query=query)
            return None
        except Exception as exc:
            if attempt < retries:
                delay = min(1.0 * 2**attempt, 4.0)
                logger.warning(f"Tavily search error for '{query}' (attempt {attempt + 1}), retrying in {delay:.0f}s: {exc}")
                await sleep(delay)
                continue
            log_api_usage(
                "tavily",
                "search",
                "error",
                duration_ms=int((time.perf_counter() - started) * 1000),
                error=str(exc) or type(exc).__name__,
                query=query,
                attempts=attempt + 1,
            )
            return None

        result = _to_result(query, response, max_results)
        log_api_usage(
            "tavily",
            "search",
            duration_ms=int((time.perf_counter() - started) * 1000),
            query=query,
            results_count=len(result.results),
            attempts=attempt + 1,
        )
        cache.put(query, result)
        return result
    return None
