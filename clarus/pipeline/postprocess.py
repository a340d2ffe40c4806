"""Post-processing after Phase 2: citations, category gate, refusals, domain stats and claims."""
from __future__ import annotations

import copy
import re
from typing import Any

from clarus.pipeline.screening import detect_ai_refusal, persist_flag
from clarus.services.logger import logger
from clarus.tools.web_utils import extract_domain, hostname

RATING_BUCKETS = {
    "Accurate": "accurate",
    "Mostly Accurate": "mostly_accurate",
    "Mixed": "mixed",
    "Questionable": "questionable",
    "Unreliable": "unreliable",
}

NON_FACTUAL_CATEGORIES = frozenset({"music", "entertainment"})

REFUSAL_CHECKED_SECTIONS = ("brief_overview", "triage", "detailed_summary", "truth_check")

_CITATION_RE = re.compile(r"\[(\d+)\]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def skips_fact_check(triage: Any) -> bool:
    """Music and entertainment content gets no truth check or action items."""
    return isinstance(triage, dict) and triage.get("content_category") in NON_FACTUAL_CATEGORIES


def rating_buckets(rating: str | None) -> dict[str, int]:
    return {bucket: int(label == rating) for label, bucket in RATING_BUCKETS.items()}


def normalize_claim_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", _NON_ALNUM_RE.sub("", text.lower())).strip()


# --- Citation gate ---


def _clean_sources(raw: Any, available: dict[str, str]) -> list[dict[str, str]]:
    if not isinstance(raw, list):
        return []
    sources: list[dict[str, str]] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        url = item.get("url")
        if not isinstance(url, str) or url not in available or url in seen:
            continue
        seen.add(url)
        title = item.get("title")
        sources.append({"url": url, "title": title if isinstance(title, str) and title else hostname(url) or url})
    return sources


def _source_url(source: Any) -> str | None:
    if isinstance(source, str):
        return source
    return source.get("url") if isinstance(source, dict) else None


def _strip_out_of_range(text: str, max_ref: int) -> str:
    cleaned = _CITATION_RE.sub(lambda m: m.group(0) if 1 <= int(m.group(1)) <= max_ref else "", text)
    return re.sub(r"\s{2,}", " ", cleaned).strip()


def apply_citation_gate(truth_check: dict[str, Any], available: dict[str, str]) -> dict[str, Any]:
    """Keep only citations that point at URLs this run's searches actually returned.

    ``available`` maps url to title for every search hit of the run. Returns
    a new dict; the input is left untouched.
    """
    result = copy.deepcopy(truth_check)
    issues = result.get("issues") if isinstance(result.get("issues"), list) else []

    for issue in issues:
        if not isinstance(issue, dict):
            continue
        sources = _clean_sources(issue.get("sources"), available)
        if sources:
            issue["sources"] = sources
        else:
            issue.pop("sources", None)

    claims = result.get("claims") if isinstance(result.get("claims"), list) else []
    for claim in claims:
        if isinstance(claim, dict) and isinstance(claim.get("sources"), list):
            claim["sources"] = [s for s in claim["sources"] if _source_url(s) in available]

    references: list[dict[str, str]] = []
    seen: set[str] = set()
    ai_refs = result.get("references")
    for ref in ai_refs if isinstance(ai_refs, list) else []:
        url = ref.get("url") if isinstance(ref, dict) else None
        if isinstance(url, str) and url in available and url not in seen:
            seen.add(url)
            references.append({"url": url, "title": ref.get("title") or available[url] or url})
    for issue in issues:
        for source in issue.get("sources", []) if isinstance(issue, dict) else []:
            if source["url"] not in seen:
                seen.add(source["url"])
                references.append(source)

    for issue in issues:
        if isinstance(issue, dict) and isinstance(issue.get("assessment"), str):
            issue["assessment"] = _strip_out_of_range(issue["assessment"], len(references))
    if references:
        result["references"] = references
    else:
        result.pop("references", None)
    return result


# --- Feedback loop ---


async def flag_refusals(
    db: Any,
    sections: dict[str, Any],
    *,
    url: str,
    content_id: str,
    user_id: str | None,
    content_type: str,
    text: str,
) -> list[str]:
    """Persist a moderation flag for every section the model refused. Returns the refused names."""
    refused: list[str] = []
    for name in REFUSAL_CHECKED_SECTIONS:
        flag = detect_ai_refusal(sections.get(name))
        if flag is None:
            continue
        refused.append(name)
        await persist_flag(
            db, flag, url=url, content_id=content_id, user_id=user_id, content_type=content_type, text=text
        )
        logger.warning(f"MODERATION: AI refused [{name}] for {url}: {flag.reason}")
    return refused


async def update_domain_stats(db: Any, url: str, triage: Any, truth_check: Any) -> None:
    domain = extract_domain(url)
    if not domain or not isinstance(triage, dict):
        return
    quality = triage.get("quality_score") or 0
    rating = truth_check.get("overall_rating") if isinstance(truth_check, dict) else None
    try:
        await db.upsert_domain_stats(domain, quality, rating_buckets(rating))
    except Exception as exc:
        logger.warning(f"Failed to update domain stats for {domain}: {exc}")


def claim_rows(truth_check: dict[str, Any], content_id: str, user_id: str) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for claim in truth_check.get("claims") or []:
        if isinstance(claim, dict) and claim.get("exact_text"):
            rows.append(
                {
                    "content_id": content_id,
                    "user_id": user_id,
                    "claim_text": claim["exact_text"],
                    "normalized_text": normalize_claim_text(claim["exact_text"]),
                    "status": claim.get("status"),
                    "severity": claim.get("severity"),
                    "sources": claim.get("sources"),
                }
            )
    for issue in truth_check.get("issues") or []:
        if isinstance(issue, dict) and issue.get("claim_or_issue"):
            sources = issue.get("sources")
            rows.append(
                {
                    "content_id": content_id,
                    "user_id": user_id,
                    "claim_text": issue["claim_or_issue"],
                    "normalized_text": normalize_claim_text(issue["claim_or_issue"]),
                    "status": issue.get("type"),
                    "severity": issue.get("severity"),
                    "sources": [s["url"] for s in sources] if sources else None,
                }
            )
    return rows


async def index_claims(db: Any, content_id: str, user_id: str | None, truth_check: Any) -> int:
    """Replace the content item's claim rows. Failures are logged, never raised."""
    if not user_id or not isinstance(truth_check, dict):
        return 0
    rows = claim_rows(truth_check, content_id, user_id)
    try:
        await db.delete_claims(content_id)
        await db.insert_claims(rows)
    except Exception as exc:
        logger.warning(f"Failed to index claims for {content_id} (non-fatal): {exc}")
        return 0
    return len(rows)
