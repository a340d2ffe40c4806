"""Shared retry loop for JSON provider APIs over httpx."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import httpx

from clarus.errors import NonRetryableError, TransientError
from clarus.services.logger import log_api_usage, logger

Backoff = Callable[[int], float]
Sleep = Callable[[float], Awaitable[None]]


def fixed_backoff(seconds: float) -> Backoff:
    return lambda _attempt: seconds


def capped_exponential_backoff(base: float = 1.0, cap: float = 4.0) -> Backoff:
    """Delay after 1-based ``attempt``: ``min(base * 2**(attempt-1), cap)``."""
    return lambda attempt: min(base * 2 ** (attempt - 1), cap)


async def request_json(
    method: str,
    url: str,
    *,
    api_name: str,
    operation: str,
    label: str,
    timeout: float,
    attempts: int = 3,
    backoff: Backoff | None = None,
    sleep: Sleep = asyncio.sleep,
    http: httpx.AsyncClient | None = None,
    **request_kwargs: Any,
) -> Any:
    """Send a request, retrying 5xx and network failures.

    A 4xx, or a 2xx whose body is not JSON, raises ``NonRetryableError`` at
    once. ``label`` names the payload in error messages ("Video metadata").
    """
    backoff = backoff or capped_exponential_backoff()
    started = time.perf_counter()
    last_error: Exception | None = None

    async def _send(client: httpx.AsyncClient) -> httpx.Response:
        return await client.request(method, url, timeout=timeout, **request_kwargs)

    for attempt in range(1, attempts + 1):
        try:
            if http is not None:
                response = await _send(http)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    response = await _send(client)
        except httpx.HTTPError as exc:
            last_error = TransientError(f"{label} request failed: {exc!r}", timed_out=isinstance(exc, httpx.TimeoutException))
            logger.warning(f"{api_name} {operation} attempt {attempt} failed for {url}: {exc!r}")
        else:
            status = response.status_code
            if 200 <= status < 300:
                if "application/json" not in response.headers.get("content-type", ""):
                    logger.error(f"{api_name} {operation}: expected JSON, got {response.headers.get('content-type')}")
                    raise NonRetryableError(f"{label} response was invalid", status)
                log_api_usage(api_name, operation, duration_ms=int((time.perf_counter() - started) * 1000), attempts=attempt)
                return response.json()
            if 400 <= status < 500:
                logger.error(f"{api_name} {operation} error ({status}) for {url}: {response.text[:200]}")
                log_api_usage(api_name, operation, "error", error=f"HTTP {status}")
                raise NonRetryableError(f"{label} could not be retrieved ({status})", status)
            last_error = TransientError(f"{label} server error ({status})", status)
            logger.warning(f"{api_name} {operation} server error ({status}) on attempt {attempt} for {url}")

        if attempt < attempts:
            await sleep(backoff(attempt))

    log_api_usage(
        api_name,
        operation,
        "error",
        duration_ms=int((time.perf_counter() - started) * 1000),
        error=f"failed after {attempts} attempts: {last_error}",
    )
    raise TransientError(f"{label} unavailable after {attempts} attempts: {last_error}")
