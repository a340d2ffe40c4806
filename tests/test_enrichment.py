from __future__ import annotations

import asyncio
import json

import pytest

from clarus.pipeline.deadline import Deadline
from clarus.pipeline.enrichment import (
    Enricher,
    claim_budget,
    credibility_warning,
    dedupe_topics,
    is_entertainment_url,
    tone_sample,
    topic_budget,
)
from clarus.services.prompt_store import PromptStore
from clarus.tools.tavily_search import SearchCache

from conftest import LONG_TEXT, SEARCH_URL, FakeLLM, fake_search


def _enricher(db, llm, search=fake_search):
    return Enricher(llm, PromptStore(db), db, search=search, content_id="c1", user_id="u1")


def test_budgets_scale_with_length():
    assert [topic_budget("x" * n) for n in (100, 1000, 5000)] == [1, 2, 3]
    assert [claim_budget("x" * n) for n in (100, 1000, 5000, 9000)] == [0, 2, 3, 5]


def test_tone_sample_segments():
    assert tone_sample("short") == "short"
    sample = tone_sample("a" * 3000 + "m" * 1000 + "z" * 3000)
    assert sample.count("\n\n---\n\n") == 2
    assert sample.endswith("z" * 1000)


def test_dedupe_topics_uses_normalized_queries():
    assert dedupe_topics(["AI Act", "ai act?", "GDPR"]) == ["AI Act", "GDPR"]


def test_entertainment_urls():
    assert is_entertainment_url("https://open.spotify.com/track/1")
    assert not is_entertainment_url("https://example.com")


def test_credibility_warning_threshold():
    assert credibility_warning("x.com", {"total_analyses": 2, "unreliable_count": 2}) is None
    assert credibility_warning("x.com", {"total_analyses": 10, "questionable_count": 3}) is None
    warning = credibility_warning(
        "x.com", {"total_analyses": 10, "questionable_count": 2, "unreliable_count": 2, "avg_quality_score": 4.25}
    )
    assert "40% of 10 previous analyses" in warning
    assert "4.2/10" in warning


@pytest.mark.asyncio
async def test_run_gathers_all_enrichment(db, configured):
    db.domains["example.com"] = {"total_analyses": 5, "unreliable_count": 3, "avg_quality_score": 3.0}
    db.preferences["u1"] = {"analysis_mode": "learn", "expertise_level": "beginner", "focus_areas": [], "is_active": True}
    llm = FakeLLM({"tone_detection": json.dumps({"tone_label": "urgent", "tone_directive": "Convey urgency."})})
    cache = SearchCache()
    content = {"id": "c1", "user_id": "u1", "url": "https://example.com/a", "type": "article", "title": "Budget"}

    result = await _enricher(db, llm).run(content, LONG_TEXT, cache, Deadline(240))

    assert "REAL-TIME WEB VERIFICATION CONTEXT" in result.web_context
    assert "TARGETED CLAIM VERIFICATION RESULTS" in result.claim_context
    assert result.claims.claims[0].search_query == "transit ridership growth 12 percent"
    assert result.tone.label == "urgent" and not result.tone.is_neutral
    assert result.preferences.analysis_mode == "learn"
    assert "Source Credibility Warning" in result.domain_warning
    assert cache.available_sources() == {SEARCH_URL: "Independent Report"}
    assert sorted(llm.calls) == ["claim_extraction", "keyword_extraction", "tone_detection"]


@pytest.mark.asyncio
async def test_entertainment_urls_skip_claim_extraction(db, llm, configured):
    content = {"id": "c1", "user_id": "u1", "url": "https://open.spotify.com/episode/1", "type": "podcast"}
    result = await _enricher(db, llm).run(content, LONG_TEXT, SearchCache(), Deadline(240))
    assert result.claims is None
    assert "claim_extraction" not in llm.calls


@pytest.mark.asyncio
async def test_web_search_skipped_without_tavily_key(db, llm, configured, monkeypatch):
    monkeypatch.setattr(configured, "tavily_api_key", "")
    content = {"id": "c1", "user_id": "u1", "url": "https://example.com/a", "type": "article"}
    result = await _enricher(db, llm).run(content, LONG_TEXT, SearchCache(), Deadline(240))
    assert result.web is None and result.claims is None
    assert llm.calls == ["tone_detection"]


@pytest.mark.asyncio
async def test_claim_refusal_yields_no_claims(db, configured):
    llm = FakeLLM({"claim_extraction": "CONTENT_REFUSED: unsafe material"})
    claims = await _enricher(db, llm).extract_claims(LONG_TEXT, 3, Deadline(240))
    assert claims == []


@pytest.mark.asyncio
async def test_tone_falls_back_to_neutral_on_bad_output(db, configured):
    llm = FakeLLM({"tone_detection": "not json"})
    tone = await _enricher(db, llm).detect_tone(LONG_TEXT, "Title", "article", Deadline(240))
    assert tone.is_neutral


class HangingLLM:
    async def complete(self, **_kwargs):
        await asyncio.sleep(30)


@pytest.mark.asyncio
async def test_phase_timeout_falls_back_to_defaults(db, configured, monkeypatch):
    monkeypatch.setattr(configured, "phase1_timeout", 0.05)
    db.preferences["u1"] = {"analysis_mode": "learn", "is_active": True}
    content = {"id": "c1", "user_id": "u1", "url": "https://example.com/a", "type": "article"}

    result = await _enricher(db, HangingLLM()).run(content, LONG_TEXT, SearchCache(), Deadline(240))

    assert result.web is None
    assert result.tone.is_neutral
    assert result.preferences is None
