"""Analysis prompt templates with a process-wide TTL cache.

Templates are identical for every tenant, so one cache is shared across
requests. The clock is injectable for tests.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from clarus.config import settings
from clarus.services.logger import logger

V = TypeVar("V")

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")


@dataclass(slots=True)
class AnalysisPrompt:
    prompt_type: str
    system_content: str
    user_content_template: str
    model_name: str
    temperature: float | None = None
    max_tokens: int | None = None
    expect_json: bool = False
    use_web_search: bool | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AnalysisPrompt":
        return cls(
            prompt_type=row["prompt_type"],
            system_content=row.get("system_content") or "",
            user_content_template=row.get("user_content_template") or "",
            model_name=row.get("model_name") or "",
            temperature=row.get("temperature"),
            max_tokens=row.get("max_tokens"),
            expect_json=bool(row.get("expect_json")),
            use_web_search=row.get("use_web_search"),
        )

    def render(self, **values: str) -> str:
        """Replace every ``{{KEY}}`` with ``values[KEY]``; unknown keys render empty."""
        return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), ""), self.user_content_template)


class TTLCache(Generic[V]):
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, V]] = {}

    def get(self, key: str) -> tuple[V | None, bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None, False
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None, False
        return value, True

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (self._clock(), value)


class PromptStore:
    """Read-only prompt lookup backed by the ``analysis_prompts`` table."""

    def __init__(self, db: Any, cache: TTLCache[AnalysisPrompt] | None = None):
        self._db = db
        self._cache = cache or TTLCache(settings.prompt_cache_ttl_seconds)

    async def get(self, prompt_type: str) -> AnalysisPrompt | None:
        cached, found = self._cache.get(prompt_type)
        if found:
            return cached
        try:
            row = await self._db.get_active_prompt(prompt_type)
        except Exception as exc:
            logger.error(f"Failed to fetch prompt {prompt_type}: {exc}")
            return None
        if not row:
            logger.error(f"No active prompt for {prompt_type}")
            return None
        prompt = AnalysisPrompt.from_row(row)
        self._cache.set(prompt_type, prompt)
        return prompt
