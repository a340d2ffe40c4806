from __future__ import annotations

import copy
import json
from unittest.mock import AsyncMock

import pytest

from clarus.errors import ContentPolicyViolation, ProcessContentError, TransientError
from clarus.pipeline import acquisition
from clarus.pipeline.controller import (
    ALREADY_ANALYZED_MESSAGE,
    CACHED_MESSAGE,
    COMPLETE_MESSAGE,
    NO_SECTIONS_MESSAGE,
    NO_TEXT_MESSAGE,
    PARTIAL_MESSAGE,
    REFUSED_OVERVIEW,
    ContentPipeline,
)
from clarus.services.entitlements import current_period
from clarus.tools.supadata import VideoMetadata

from conftest import LONG_TEXT, SEARCH_URL, FakeLLM, fake_search, no_sleep

ALL_PERSISTED = {"brief_overview", "triage", "mid_length_summary", "detailed_summary", "truth_check", "action_items"}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _pipeline(db, llm, search=fake_search, **kwargs):
    return ContentPipeline(db, llm, search=search, sleep=no_sleep, **kwargs)


def _article(db, content_id="c1", **fields):
    fields.setdefault("url", "https://www.example.com/news/transit")
    fields.setdefault("full_text", LONG_TEXT)
    return db.add_content(id=content_id, user_id="u1", type="article", **fields)


def _sequence(*responses):
    items = iter(responses)
    return lambda: next(items)


@pytest.mark.asyncio
async def test_first_time_video_runs_to_complete(db, llm, configured, monkeypatch):
    monkeypatch.setattr(
        acquisition,
        "get_video_metadata",
        AsyncMock(
            return_value=VideoMetadata(
                title="Transit Explained",
                author="City Channel",
                duration=900,
                thumbnail_url="https://img.example/v.jpg",
                raw_youtube_metadata={"id": "abc"},
            )
        ),
    )
    monkeypatch.setattr(acquisition, "get_video_transcript", AsyncMock(return_value=LONG_TEXT))
    db.add_content(id="v1", user_id="u1", url="https://www.youtube.com/watch?v=abc", type="youtube", title="Processing: youtube.com")

    result = await _pipeline(db, llm).process_content("v1", "u1")

    assert result.success and not result.cached
    assert result.message == COMPLETE_MESSAGE
    assert set(result.sections_generated) == ALL_PERSISTED
    assert result.paywall_warning is None

    summary = db.summary("v1")
    assert summary["processing_status"] == "complete"
    assert summary["brief_overview"] == "A short overview of the transit budget."
    assert summary["mid_length_summary"] == "A mid summary."
    assert [r["url"] for r in summary["truth_check"]["references"]] == [SEARCH_URL]
    assert summary["truth_check"]["issues"][0]["assessment"] == "Reported by the agency [1] but disputed ."

    content = db.contents["v1"]
    assert content["title"] == "Transit Explained"
    assert content["tags"] == ["transit", "city budget"]
    assert content["analysis_language"] == "en"
    assert "detected_tone" not in content

    assert db.usage[("u1", current_period(), "analyses_count")] == 1
    assert db.domain_updates == [
        ("youtube.com", 8, {"accurate": 0, "mostly_accurate": 1, "mixed": 0, "questionable": 0, "unreliable": 0})
    ]
    assert len(await db.get_claims("v1")) == 2
    assert llm.calls.count("truth_check") == 1


@pytest.mark.asyncio
async def test_cached_article_is_a_full_hit_without_ai_calls(db, llm, configured):
    source = db.add_content(
        id="src", user_id="someone-else", type="article", url="https://example.com/news/transit", full_text=LONG_TEXT
    )
    await db.upsert_summary(
        source["id"],
        "someone-else",
        "en",
        processing_status="complete",
        brief_overview="Cached overview",
        triage={"quality_score": 9},
        detailed_summary="Cached details",
    )
    _article(db, "mine", url="https://example.com/news/transit/?utm_source=newsletter", full_text=None)
    searches: list[str] = []

    async def counting_search(query, cache):
        searches.append(query)
        return await fake_search(query, cache)

    result = await _pipeline(db, llm, search=counting_search).process_content("mine", "u1")

    assert result.cached is True
    assert result.message == CACHED_MESSAGE
    assert set(result.sections_generated) == {"brief_overview", "triage", "detailed_summary"}
    assert llm.calls == []
    assert searches == []
    assert db.summary("mine")["brief_overview"] == "Cached overview"
    assert db.contents["mine"]["full_text"] == LONG_TEXT


@pytest.mark.asyncio
async def test_music_content_skips_truth_check_and_action_items(db, configured):
    llm = FakeLLM({"triage": json.dumps({"quality_score": 7, "content_category": "music"})})
    _article(db)

    result = await _pipeline(db, llm).process_content("c1", "u1")

    summary = db.summary("c1")
    assert "truth_check" not in summary
    assert "action_items" not in summary
    assert "truth_check" not in result.sections_generated
    assert db.claims == []
    assert sum(db.domain_updates[0][2].values()) == 0


@pytest.mark.asyncio
async def test_moderation_block_refuses_without_generation(db, llm, configured):
    text = "Detailed steps to manufacture nerve agent at home, including precursors and equipment lists. " * 3
    _article(db, full_text=text)

    with pytest.raises(ContentPolicyViolation) as exc_info:
        await _pipeline(db, llm).process_content("c1", "u1")

    assert exc_info.value.status_code == 200
    assert llm.calls == []
    assert db.summary("c1")["processing_status"] == "refused"
    assert db.summary("c1")["brief_overview"] == REFUSED_OVERVIEW
    assert db.contents["c1"]["full_text"] == "PROCESSING_FAILED::CONTENT_POLICY_VIOLATION"
    assert db.flags and db.flags[0]["flag_source"] == "keyword_screening"


@pytest.mark.asyncio
async def test_one_failing_section_does_not_block_the_others(db, configured):
    llm = FakeLLM({"brief_overview": TransientError("OpenRouter API error (500)", 500)})
    _article(db)

    result = await _pipeline(db, llm).process_content("c1", "u1")

    assert result.message == COMPLETE_MESSAGE
    assert set(result.sections_generated) == ALL_PERSISTED - {"brief_overview"}
    summary = db.summary("c1")
    assert "brief_overview" not in summary
    assert summary["detailed_summary"].startswith("## Details")
    assert summary["processing_status"] == "complete"
    # three attempts in phase two plus three in self-heal
    assert llm.calls.count("brief_overview") == 6


@pytest.mark.asyncio
async def test_failed_triage_is_healed_on_full_text(db, configured):
    llm = FakeLLM(
        {
            "triage": _sequence(
                "garbage", "garbage", "garbage", json.dumps({"quality_score": 5, "content_category": "news"})
            )
        }
    )
    _article(db)

    result = await _pipeline(db, llm).process_content("c1", "u1")

    assert "triage" in result.sections_generated
    assert db.summary("c1")["triage"]["quality_score"] == 5
    assert [update[1] for update in db.domain_updates] == [5]


@pytest.mark.asyncio
async def test_deadline_mid_phase_two_leaves_partial_results(db, configured):
    clock = FakeClock()

    def slow_details():
        clock.now = 500.0
        return "Details written just before the deadline."

    llm = FakeLLM({"detailed_summary": slow_details})
    _article(db)

    result = await _pipeline(db, llm, clock=clock).process_content("c1", "u1")

    assert result.message == PARTIAL_MESSAGE
    summary = db.summary("c1")
    assert summary["processing_status"] == "partial"
    assert summary["detailed_summary"] == "Details written just before the deadline."
    assert "truth_check" not in summary
    for section in result.sections_generated:
        assert summary[section] is not None


@pytest.mark.asyncio
async def test_placeholder_title_is_replaced_and_tone_persisted(db, configured):
    llm = FakeLLM({"tone_detection": json.dumps({"tone_label": "alarmist", "tone_directive": "Stay calm."})})
    _article(db, title="Analyzing: example.com")

    await _pipeline(db, llm).process_content("c1", "u1")

    assert db.contents["c1"]["title"] == "Council Approves Transit Budget"
    assert db.contents["c1"]["detected_tone"] == "alarmist"
    assert "Stay calm." in llm.prompts["brief_overview"]


@pytest.mark.asyncio
async def test_paywalled_article_carries_warning(db, llm, configured):
    _article(db, url="https://www.nytimes.com/2026/03/01/transit.html", full_text=LONG_TEXT[:1500])

    result = await _pipeline(db, llm).process_content("c1", "u1")

    assert result.paywall_warning is not None
    assert result.message == COMPLETE_MESSAGE


@pytest.mark.asyncio
async def test_missing_text_returns_without_sections(db, llm, configured):
    _article(db, full_text="PROCESSING_FAILED::ARTICLE::SCRAPE_FAILED")

    result = await _pipeline(db, llm).process_content("c1", "u1", skip_scraping=True)

    assert result.success
    assert result.message == NO_TEXT_MESSAGE
    assert result.sections_generated == []
    assert llm.calls == []


@pytest.mark.asyncio
async def test_podcast_submission_returns_transcript_id(db, llm, configured, monkeypatch):
    monkeypatch.setattr(acquisition, "submit_transcription", AsyncMock(return_value="tr_42"))
    db.add_content(id="p1", user_id="u1", type="podcast", url="https://cdn.example/ep.mp3")

    result = await _pipeline(db, llm).process_content("p1", "u1")

    assert result.transcript_id == "tr_42"
    assert llm.calls == []
    assert db.usage[("u1", current_period(), "podcast_analyses_count")] == 1
    assert db.summary("p1")["processing_status"] == "transcribing"


@pytest.mark.asyncio
async def test_reentry_after_transcription_does_not_count_usage(db, llm, configured):
    db.add_content(id="p1", user_id="u1", type="podcast", url="https://cdn.example/ep.mp3", full_text=LONG_TEXT)

    result = await _pipeline(db, llm).process_content("p1", None, count_usage=False)

    assert result.message == COMPLETE_MESSAGE
    assert db.usage == {}


@pytest.mark.asyncio
async def test_force_regenerate_clears_summary_and_skips_usage(db, llm, configured):
    _article(db)
    await db.upsert_summary("c1", "u1", "en", brief_overview="Old", processing_status="complete", legacy="x")

    await _pipeline(db, llm).process_content("c1", "u1", force_regenerate=True)

    assert "legacy" not in db.summary("c1")
    assert db.usage == {}


@pytest.mark.asyncio
async def test_non_english_summary_uses_language_directive(db, llm, configured):
    db.tiers["u1"] = "starter"
    _article(db)

    result = await _pipeline(db, llm).process_content("c1", "u1", language="es")

    assert result.language == "es"
    assert db.summary("c1", "es")["processing_status"] == "complete"
    assert "Spanish" in llm.prompts["detailed_summary"]
    assert "Spanish" not in llm.prompts["auto_tags"]


@pytest.mark.asyncio
async def test_free_tier_cannot_request_other_languages(db, llm, configured):
    _article(db)

    with pytest.raises(ProcessContentError) as exc_info:
        await _pipeline(db, llm).process_content("c1", "u1", language="fr")

    assert exc_info.value.status_code == 403
    assert exc_info.value.upgrade_required is True
    assert exc_info.value.tier == "free"


@pytest.mark.asyncio
async def test_usage_limit_reached(db, llm, configured):
    db.usage[("u1", current_period(), "analyses_count")] = 5
    _article(db)

    with pytest.raises(ProcessContentError) as exc_info:
        await _pipeline(db, llm).process_content("c1", "u1")

    assert exc_info.value.status_code == 403
    assert "(5)" in exc_info.value.message
    assert llm.calls == []


@pytest.mark.asyncio
async def test_ownership_and_existence_checks(db, llm, configured):
    _article(db)
    pipeline = _pipeline(db, llm)

    with pytest.raises(ProcessContentError) as not_found:
        await pipeline.process_content("missing", "u1")
    assert not_found.value.status_code == 404

    with pytest.raises(ProcessContentError) as denied:
        await pipeline.process_content("c1", "intruder")
    assert denied.value.status_code == 403


@pytest.mark.asyncio
async def test_missing_api_keys_are_a_server_error(db, llm, configured, monkeypatch):
    monkeypatch.setattr(configured, "openrouter_api_key", "")
    _article(db)

    with pytest.raises(ProcessContentError) as exc_info:
        await _pipeline(db, llm).process_content("c1", "u1")

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Server configuration error: Missing API keys."


@pytest.mark.asyncio
async def test_no_persisted_section_is_an_error_not_complete(db, configured):
    sections = ("brief_overview", "triage", "mid_length_summary", "detailed_summary", "auto_tags", "truth_check", "action_items")
    llm = FakeLLM({name: TransientError("OpenRouter API error (500)", 500) for name in sections})
    _article(db)

    result = await _pipeline(db, llm).process_content("c1", "u1")

    assert result.success is False
    assert result.message == NO_SECTIONS_MESSAGE
    assert result.sections_generated == []
    assert db.summary("c1")["processing_status"] == "error"
    assert "analysis_language" not in db.contents["c1"]


@pytest.mark.asyncio
async def test_running_twice_keeps_section_content(db, llm, configured):
    _article(db)
    pipeline = _pipeline(db, llm)

    first = await pipeline.process_content("c1", "u1")
    sections = {name: copy.deepcopy(db.summary("c1")[name]) for name in first.sections_generated}
    calls = len(llm.calls)

    second = await pipeline.process_content("c1", "u1")

    assert second.cached is True
    assert second.message == ALREADY_ANALYZED_MESSAGE
    assert set(second.sections_generated) == set(first.sections_generated)
    assert {name: db.summary("c1")[name] for name in sections} == sections
    assert len(llm.calls) == calls
    assert db.usage[("u1", current_period(), "analyses_count")] == 1

    regenerated = await pipeline.process_content("c1", "u1", force_regenerate=True)

    assert set(regenerated.sections_generated) == set(first.sections_generated)
    assert {name: db.summary("c1")[name] for name in sections} == sections
