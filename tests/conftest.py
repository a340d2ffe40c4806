from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import pytest

from clarus.config import settings
from clarus.llm_client import ChatCompletion, Usage
from clarus.pipeline.enrichment import CLAIM_EXTRACTION_SYSTEM
from clarus.tools.tavily_search import SearchCache, SearchHit, SearchResult
from clarus.tools.web_utils import normalize_url

JSON_PROMPTS = {"triage", "truth_check", "action_items", "auto_tags", "keyword_extraction", "tone_detection"}

PROMPT_TYPES = (
    "brief_overview",
    "triage",
    "mid_length_summary",
    "detailed_summary",
    "auto_tags",
    "truth_check",
    "action_items",
    "keyword_extraction",
    "tone_detection",
)

SEARCH_URL = "https://source.example.com/report"
SEARCH_TITLE = "Independent Report"

LONG_TEXT = (
    "The city council approved a new transit budget of 2.4 billion dollars on Monday. "
    "Officials said ridership grew 12 percent year over year and that the new light rail line "
    "will open in 2027. Critics argued the projections rely on optimistic assumptions. "
) * 30


def prompt_row(prompt_type: str, **overrides: Any) -> dict[str, Any]:
    row = {
        "prompt_type": prompt_type,
        "system_content": prompt_type,
        "user_content_template": "{{TONE}}\n{{LANGUAGE}}\n{{METADATA}}\n{{USER_PREFERENCES}}\n{{CONTENT}}",
        "model_name": "test/model",
        "temperature": 0.2,
        "max_tokens": 2000,
        "expect_json": prompt_type in JSON_PROMPTS,
        "use_web_search": True,
    }
    row.update(overrides)
    return row


def default_responses() -> dict[str, Any]:
    return {
        "brief_overview": "A short overview of the transit budget.",
        "triage": json.dumps({"quality_score": 8, "content_category": "news", "signal_noise_score": 2}),
        "mid_length_summary": json.dumps({"title": "Council Approves Transit Budget", "mid_length_summary": "A mid summary."}),
        "detailed_summary": "## Details\nThe council approved the budget.",
        "auto_tags": json.dumps({"tags": ["Transit", "city-budget", "transit"]}),
        "truth_check": json.dumps(
            {
                "overall_rating": "Mostly Accurate",
                "issues": [
                    {
                        "claim_or_issue": "Ridership grew 12 percent",
                        "type": "unverified",
                        "severity": "low",
                        "assessment": "Reported by the agency [1] but disputed [4].",
                        "sources": [
                            {"url": SEARCH_URL, "title": ""},
                            {"url": "https://hallucinated.example.org/page", "title": "Made Up"},
                        ],
                    }
                ],
                "claims": [
                    {"exact_text": "The line opens in 2027!", "status": "verified", "severity": "low", "sources": [SEARCH_URL]}
                ],
            }
        ),
        "action_items": json.dumps({"action_items": [{"title": "Check the council minutes"}]}),
        "keyword_extraction": json.dumps({"queries": ["city transit budget 2.4 billion"]}),
        "claim_extraction": json.dumps(
            {"claims": [{"claim": "Ridership grew 12 percent", "search_query": "transit ridership growth 12 percent"}]}
        ),
        "tone_detection": json.dumps({"tone_label": "neutral", "tone_directive": "Write neutrally."}),
    }


class FakeLLM:
    """Answers by caller: analysis prompts use their prompt type as system content."""

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = default_responses()
        self.responses.update(responses or {})
        self.calls: list[str] = []
        self.prompts: dict[str, str] = {}

    async def complete(self, *, model: str, system: str, user: str, **kwargs: Any) -> ChatCompletion:
        caller = "claim_extraction" if system == CLAIM_EXTRACTION_SYSTEM else system
        self.calls.append(caller)
        self.prompts[caller] = user
        response = self.responses.get(caller)
        if callable(response):
            response = response()
        if isinstance(response, Exception):
            raise response
        return ChatCompletion(content=response, usage=Usage(100, 50), model=model)


class FakeDb:
    """In-memory stand-in for ``clarus.services.supabase``."""

    def __init__(self):
        self.contents: dict[str, dict[str, Any]] = {}
        self.summaries: dict[tuple[str, str], dict[str, Any]] = {}
        self.claims: list[dict[str, Any]] = []
        self.domains: dict[str, dict[str, Any]] = {}
        self.domain_updates: list[tuple[str, float, dict[str, int]]] = []
        self.prompts: dict[str, dict[str, Any]] = {t: prompt_row(t) for t in PROMPT_TYPES}
        self.preferences: dict[str, dict[str, Any]] = {}
        self.flags: list[dict[str, Any]] = []
        self.tiers: dict[str, str] = {}
        self.usage: dict[tuple[str, str, str], int] = {}
        self.fail_summary_upserts = False

    def add_content(self, **row: Any) -> dict[str, Any]:
        row.setdefault("type", "article")
        row.setdefault("date_added", datetime.now(timezone.utc))
        self.contents[row["id"]] = row
        return row

    # --- Content ---

    async def get_content(self, content_id: str) -> dict[str, Any] | None:
        row = self.contents.get(content_id)
        return dict(row) if row else None

    async def get_content_by_transcript_id(self, transcript_id: str) -> dict[str, Any] | None:
        for row in self.contents.values():
            if row.get("podcast_transcript_id") == transcript_id:
                return dict(row)
        return None

    async def update_content(self, content_id: str, **fields: Any) -> bool:
        if content_id not in self.contents:
            return False
        self.contents[content_id].update(fields)
        return True

    async def find_cache_candidates(
        self, url: str, *, exclude_user_id: str, since: datetime, limit: int
    ) -> list[dict[str, Any]]:
        rows = [
            dict(row)
            for row in self.contents.values()
            if normalize_url(row.get("url") or "") == url
            and row.get("user_id") != exclude_user_id
            and row.get("full_text")
            and row["date_added"] >= since
        ]
        rows.sort(key=lambda row: row["date_added"], reverse=True)
        return rows[:limit]

    # --- Summaries ---

    def summary(self, content_id: str, language: str = "en") -> dict[str, Any]:
        return self.summaries.get((content_id, language), {})

    async def get_complete_summaries(self, content_ids: list[str], language: str) -> list[dict[str, Any]]:
        return [
            dict(row)
            for (content_id, lang), row in self.summaries.items()
            if content_id in content_ids and lang == language and row.get("processing_status") == "complete"
        ]

    async def upsert_summary(self, content_id: str, user_id: str, language: str, **fields: Any) -> bool:
        if self.fail_summary_upserts:
            return False
        row = self.summaries.setdefault(
            (content_id, language), {"content_id": content_id, "user_id": user_id, "language": language}
        )
        row.update(fields)
        return True

    async def delete_summary(self, content_id: str, language: str) -> None:
        self.summaries.pop((content_id, language), None)

    # --- Claims ---

    async def get_claims(self, content_id: str) -> list[dict[str, Any]]:
        return [dict(c) for c in self.claims if c["content_id"] == content_id]

    async def insert_claims(self, rows: list[dict[str, Any]]) -> None:
        self.claims.extend(dict(row) for row in rows)

    async def delete_claims(self, content_id: str) -> None:
        self.claims = [c for c in self.claims if c["content_id"] != content_id]

    # --- Domains ---

    async def get_domain(self, domain: str) -> dict[str, Any] | None:
        return self.domains.get(domain)

    async def upsert_domain_stats(self, domain: str, quality_score: float, buckets: dict[str, int]) -> None:
        self.domain_updates.append((domain, quality_score, buckets))

    # --- Prompts / preferences / moderation ---

    async def get_active_prompt(self, prompt_type: str) -> dict[str, Any] | None:
        return self.prompts.get(prompt_type)

    async def get_user_preferences(self, user_id: str) -> dict[str, Any] | None:
        return self.preferences.get(user_id)

    async def insert_flag(self, row: dict[str, Any]) -> None:
        self.flags.append(row)

    # --- Users / usage ---

    async def get_user_tier(self, user_id: str) -> str | None:
        return self.tiers.get(user_id)

    async def increment_usage_if_allowed(
        self, user_id: str, period: str, field: str, limit: int | None
    ) -> dict[str, Any]:
        key = (user_id, period, field)
        current = self.usage.get(key, 0)
        if limit is not None and current >= limit:
            return {"allowed": False, "current_count": current}
        self.usage[key] = current + 1
        return {"allowed": True, "current_count": current + 1}


async def fake_search(query: str, cache: SearchCache) -> SearchResult:
    cached, found = cache.get(query)
    if found:
        return cached
    result = SearchResult(
        query=query,
        answer="Officials confirmed the figures.",
        results=[SearchHit(title=SEARCH_TITLE, url=SEARCH_URL, content="The agency reported ridership growth.")],
    )
    cache.put(query, result)
    return result


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def configured(monkeypatch):
    """Every key the pipeline checks at call time."""
    for name, value in {
        "supabase_url": "https://test.supabase.co",
        "supabase_service_role_key": "service-role",
        "supadata_api_key": "supadata-key",
        "openrouter_api_key": "openrouter-key",
        "firecrawl_api_key": "firecrawl-key",
        "tavily_api_key": "tavily-key",
        "assemblyai_api_key": "assemblyai-key",
        "assemblyai_webhook_token": "",
    }.items():
        monkeypatch.setattr(settings, name, value)
    return settings


@pytest.fixture
def db():
    return FakeDb()


@pytest.fixture
def llm():
    return FakeLLM()
