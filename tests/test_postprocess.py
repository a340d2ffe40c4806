from __future__ import annotations

import pytest

from clarus.pipeline.postprocess import (
    apply_citation_gate,
    flag_refusals,
    index_claims,
    normalize_claim_text,
    rating_buckets,
    skips_fact_check,
    update_domain_stats,
)

AVAILABLE = {
    "https://reuters.example/a": "Reuters A",
    "https://apnews.example/b": "AP B",
}


def test_citation_gate_drops_unsearched_urls():
    truth_check = {
        "overall_rating": "Mixed",
        "issues": [
            {
                "claim_or_issue": "Claim one",
                "assessment": "Supported by [1], contradicted by [2] and  [7].",
                "sources": [
                    {"url": "https://reuters.example/a"},
                    {"url": "https://invented.example/z", "title": "Invented"},
                    {"url": "https://reuters.example/a", "title": "dup"},
                    "not-a-dict",
                ],
            },
            {"claim_or_issue": "Claim two", "sources": [{"url": "https://invented.example/y"}]},
        ],
        "references": [
            {"url": "https://apnews.example/b", "title": ""},
            {"url": "https://invented.example/q", "title": "Q"},
        ],
        "claims": [{"exact_text": "x", "sources": ["https://reuters.example/a", "https://invented.example/w"]}],
    }

    gated = apply_citation_gate(truth_check, AVAILABLE)

    first, second = gated["issues"]
    assert first["sources"] == [{"url": "https://reuters.example/a", "title": "reuters.example"}]
    assert "sources" not in second
    assert [r["url"] for r in gated["references"]] == ["https://apnews.example/b", "https://reuters.example/a"]
    assert gated["references"][0]["title"] == "AP B"
    assert first["assessment"] == "Supported by [1], contradicted by [2] and ."
    assert gated["claims"][0]["sources"] == ["https://reuters.example/a"]
    assert truth_check["issues"][0]["sources"][1]["url"] == "https://invented.example/z"


def test_citation_gate_without_any_search_results():
    gated = apply_citation_gate(
        {"issues": [{"assessment": "See [1].", "sources": [{"url": "https://made.up/x"}]}], "references": [{"url": "https://made.up/x"}]},
        {},
    )
    assert "references" not in gated
    assert "sources" not in gated["issues"][0]
    assert gated["issues"][0]["assessment"] == "See ."


def test_citation_gate_strips_markers_when_no_reference_survives():
    gated = apply_citation_gate(
        {"issues": [{"assessment": "Contradicted by [3].", "sources": [{"url": "https://made.up/x"}]}]},
        {"https://real.example/a": "Real"},
    )
    assert "references" not in gated
    assert gated["issues"][0]["assessment"] == "Contradicted by ."


def test_category_gate():
    assert skips_fact_check({"content_category": "music"})
    assert skips_fact_check({"content_category": "entertainment"})
    assert not skips_fact_check({"content_category": "news"})
    assert not skips_fact_check(None)


def test_rating_buckets_one_hot():
    assert rating_buckets("Mostly Accurate") == {
        "accurate": 0,
        "mostly_accurate": 1,
        "mixed": 0,
        "questionable": 0,
        "unreliable": 0,
    }
    assert sum(rating_buckets(None).values()) == 0


def test_normalize_claim_text():
    assert normalize_claim_text("  GDP grew 3.2%   in Q4! ") == "gdp grew 32 in q4"


@pytest.mark.asyncio
async def test_flag_refusals_persists_flags(db):
    refused = await flag_refusals(
        db,
        {
            "brief_overview": "CONTENT_REFUSED: describes weapon synthesis",
            "triage": {"quality_score": 3},
            "truth_check": {"refused": True, "reason": "terror attack planning"},
        },
        url="https://example.com",
        content_id="c1",
        user_id="u1",
        content_type="article",
        text="body",
    )
    assert refused == ["brief_overview", "truth_check"]
    assert [f["flag_source"] for f in db.flags] == ["ai_refusal", "ai_refusal"]
    assert db.flags[1]["flag_categories"] == ["terrorism"]


@pytest.mark.asyncio
async def test_update_domain_stats(db):
    await update_domain_stats(db, "https://www.example.com/a", {"quality_score": 7}, {"overall_rating": "Unreliable"})
    domain, quality, buckets = db.domain_updates[0]
    assert (domain, quality, buckets["unreliable"]) == ("example.com", 7, 1)

    await update_domain_stats(db, "https://example.com/b", None, None)
    assert len(db.domain_updates) == 1


@pytest.mark.asyncio
async def test_update_domain_stats_swallows_failures(db):
    async def broken(*_args, **_kwargs):
        raise RuntimeError("rpc down")

    db.upsert_domain_stats = broken
    await update_domain_stats(db, "https://example.com", {"quality_score": 5}, None)


@pytest.mark.asyncio
async def test_index_claims_replaces_rows(db):
    db.claims = [{"content_id": "c1", "claim_text": "stale"}, {"content_id": "c2", "claim_text": "other"}]
    truth_check = {
        "claims": [{"exact_text": "Sales doubled!", "status": "verified", "severity": "low", "sources": ["https://a"]}],
        "issues": [
            {"claim_or_issue": "Misleading chart", "type": "misleading", "severity": "medium", "sources": [{"url": "https://b", "title": "B"}]},
            {"claim_or_issue": "No source", "type": "unverified"},
        ],
    }

    count = await index_claims(db, "c1", "u1", truth_check)

    assert count == 3
    rows = await db.get_claims("c1")
    assert [r["normalized_text"] for r in rows] == ["sales doubled", "misleading chart", "no source"]
    assert rows[1]["sources"] == ["https://b"]
    assert rows[2]["sources"] is None
    assert await db.get_claims("c2") != []


@pytest.mark.asyncio
async def test_index_claims_needs_user_and_truth_check(db):
    assert await index_claims(db, "c1", None, {"claims": []}) == 0
    assert await index_claims(db, "c1", "u1", None) == 0
