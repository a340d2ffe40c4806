"""Phase 1 enrichment.

Web search context, targeted claim verification, tone detection, user
preferences and domain credibility run concurrently under one aggregate
budget. Every piece is optional: on failure or when the budget runs out the
pipeline continues with neutral defaults.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from clarus.config import settings
from clarus.pipeline.deadline import Deadline
from clarus.pipeline.parsing import parse_ai_json
from clarus.pipeline.preferences import AnalysisPreferences
from clarus.pipeline.sanitizer import INSTRUCTION_ANCHOR, sanitize_for_prompt, wrap_user_content
from clarus.pipeline.screening import detect_ai_refusal
from clarus.pipeline.sections import NEUTRAL_TONE_DIRECTIVE
from clarus.services.logger import log_llm_call, logger
from clarus.services.prompt_store import PromptStore
from clarus.tools import tavily_search
from clarus.tools.tavily_search import SearchCache, SearchResult, normalize_query
from clarus.tools.web_utils import extract_domain

NEUTRAL_TONE_LABEL = "neutral"

TOPIC_SOURCE_CHARS = 5_000
CLAIM_SOURCE_CHARS = 10_000
MIN_CLAIM_TEXT_LENGTH = 100
MIN_DOMAIN_ANALYSES = 3
UNRELIABLE_RATIO_THRESHOLD = 0.3

ENTERTAINMENT_DOMAINS = frozenset(
    {
        "open.spotify.com",
        "spotify.com",
        "music.youtube.com",
        "music.apple.com",
        "soundcloud.com",
        "tidal.com",
        "deezer.com",
        "bandcamp.com",
        "pandora.com",
        "audiomack.com",
        "genius.com",
        "azlyrics.com",
        "lyrics.com",
        "vimeo.com",
    }
)

CLAIM_EXTRACTION_SYSTEM = (
    "You are a fact-checking assistant. Extract specific, verifiable factual claims from content "
    "that can be checked against current web sources. Focus on claims that may be time-sensitive "
    "or have changed recently."
)

CLAIM_EXTRACTION_USER = """Extract up to {max_claims} specific verifiable factual claims from this content. For each claim, provide a targeted web search query that would verify or refute it.

IMPORTANT: Generate all search queries in English, even if the content is in another language. English queries produce better web search results.

Focus on:
- Version numbers and release dates (e.g., "Product X version 2.0 was released")
- Statistics and figures (e.g., "85% of users prefer X")
- Health and medical claims (e.g., "X reduces risk of Y by Z%")
- Financial claims (e.g., "Company X revenue grew Z% year-over-year")
- Scientific findings (e.g., "Study shows correlation between X and Y")
- Product availability and features (e.g., "Service X now supports Y")
- Recent events and announcements (e.g., "Company acquired Z")
- Pricing and technical specifications

Skip:
- Opinions and subjective statements
- Common knowledge facts that rarely change
- Predictions about the future
- The author's personal experiences

Return JSON: {{ "claims": [{{ "claim": "exact claim text", "search_query": "targeted search query to verify this claim in {year}" }}] }}

{anchor}
Content:
{content}"""

SearchFn = Callable[[str, SearchCache], Awaitable[SearchResult | None]]


@dataclass(slots=True)
class VerifiableClaim:
    claim: str
    search_query: str


@dataclass(slots=True)
class WebSearchContext:
    searches: list[SearchResult]
    formatted: str


@dataclass(slots=True)
class ClaimSearchContext:
    claims: list[VerifiableClaim]
    searches: list[SearchResult]
    formatted: str


@dataclass(slots=True)
class ToneResult:
    label: str = NEUTRAL_TONE_LABEL
    directive: str = NEUTRAL_TONE_DIRECTIVE

    @property
    def is_neutral(self) -> bool:
        return self.label == NEUTRAL_TONE_LABEL


@dataclass(slots=True)
class EnrichmentResult:
    web: WebSearchContext | None = None
    claims: ClaimSearchContext | None = None
    tone: ToneResult = field(default_factory=ToneResult)
    preferences: AnalysisPreferences | None = None
    domain_warning: str | None = None

    @property
    def web_context(self) -> str | None:
        return self.web.formatted if self.web else None

    @property
    def claim_context(self) -> str | None:
        return self.claims.formatted if self.claims else None


def topic_budget(text: str) -> int:
    if len(text) < 500:
        return 1
    if len(text) < 2000:
        return 2
    return 3


def claim_budget(text: str) -> int:
    if len(text) < 500:
        return 0
    if len(text) < 2000:
        return 2
    if len(text) < 8000:
        return 3
    return 5


def is_entertainment_url(url: str) -> bool:
    domain = extract_domain(url)
    return bool(domain) and domain in ENTERTAINMENT_DOMAINS


def tone_sample(text: str) -> str:
    """First 2K, middle 1K when longer than 6K, last 1K when longer than 4K."""
    segments = [text[:2000]]
    if len(text) > 6000:
        mid = len(text) // 2
        segments.append(text[mid - 500 : mid + 500])
    if len(text) > 4000:
        segments.append(text[-1000:])
    return "\n\n---\n\n".join(segments)


def dedupe_topics(topics: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for topic in topics:
        key = normalize_query(topic)
        if key not in seen:
            seen.add(key)
            unique.append(topic)
    return unique


def format_web_context(searches: list[SearchResult]) -> str:
    lines = [
        "\n\n---",
        "## REAL-TIME WEB VERIFICATION CONTEXT",
        "The following information was retrieved from web searches to help verify claims:",
        "",
    ]
    for search in searches:
        lines.append(f'### Search: "{search.query}"')
        if search.answer:
            lines.append(f"**Summary:** {search.answer}")
        for hit in search.results:
            lines.append(f"- [{hit.title}]({hit.url})")
            if hit.content:
                lines.append(f"  {hit.content[:200]}...")
        lines.append("")
    lines.append("---")
    lines.append("Use this web context to verify claims. If something conflicts with web results, note the discrepancy.")
    lines.append("")
    return "\n".join(lines)


def format_claim_context(claims: list[VerifiableClaim], searches: list[SearchResult]) -> str:
    lines = [
        "\n\n---",
        "## TARGETED CLAIM VERIFICATION RESULTS",
        "CRITICAL: These search results reflect CURRENT real-time information as of today.",
        "If these web results contradict your training data, ALWAYS trust these web search results over your training data.",
        "Your training data may be outdated. The web results below are fresh and authoritative.",
        "",
    ]
    for claim, search in zip(claims, searches):
        lines.append(f'### Claim: "{claim.claim}"')
        lines.append(f'**Search Query:** "{claim.search_query}"')
        if search.results:
            if search.answer:
                lines.append(f"**Web Answer:** {search.answer}")
            for hit in search.results:
                lines.append(f"- [{hit.title}]({hit.url})")
                if hit.content:
                    lines.append(f"  {hit.content[:300]}")
        else:
            lines.append("_No web results found for this claim._")
        lines.append("")
    lines.append("---")
    lines.append("Use the claim verification results above to check the accuracy of ALL claims in the content.")
    lines.append("If a claim is contradicted by these web results, mark it as inaccurate and cite the web source.")
    lines.append("")
    return "\n".join(lines)


def credibility_warning(domain: str, row: dict[str, Any] | None) -> str | None:
    """Warn when more than 30% of at least 3 prior analyses rated the domain poorly."""
    if not row or (row.get("total_analyses") or 0) < MIN_DOMAIN_ANALYSES:
        return None
    total = row["total_analyses"]
    ratio = ((row.get("questionable_count") or 0) + (row.get("unreliable_count") or 0)) / total
    if ratio <= UNRELIABLE_RATIO_THRESHOLD:
        return None
    avg = row.get("avg_quality_score")
    avg_text = f"{avg:.1f}" if isinstance(avg, (int, float)) else "N/A"
    return (
        "## Source Credibility Warning\n"
        f'This content is from {domain}, which has been rated "Questionable" or "Unreliable" in '
        f"{round(ratio * 100)}% of {total} previous analyses (avg quality score: {avg_text}/10). "
        "Apply extra scrutiny to factual claims from this source."
    )


def _topics_from(parsed: Any) -> list[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ("queries", "topics"):
            if isinstance(parsed.get(key), list):
                return parsed[key]
    return []


class Enricher:
    """Phase 1 collaborators bound to one pipeline run."""

    def __init__(
        self,
        llm: Any,
        prompts: PromptStore,
        db: Any,
        *,
        search: SearchFn = tavily_search.search,
        content_id: str | None = None,
        user_id: str | None = None,
    ):
        self._llm = llm
        self._prompts = prompts
        self._db = db
        self._search = search
        self._content_id = content_id
        self._user_id = user_id

    async def _complete_json(self, caller: str, deadline: Deadline, timeout: float, **kwargs: Any) -> Any:
        started = time.perf_counter()
        completion = await self._llm.complete(json_mode=True, timeout=deadline.bound(timeout), **kwargs)
        log_llm_call(
            model=completion.model,
            caller=caller,
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
            duration_ms=int((time.perf_counter() - started) * 1000),
            content_id=self._content_id,
            user_id=self._user_id,
        )
        return completion.content

    # --- Web search context ---

    async def extract_topics(self, text: str, max_topics: int, deadline: Deadline) -> list[str]:
        prompt = await self._prompts.get("keyword_extraction")
        if prompt is None:
            return []
        content = wrap_user_content(sanitize_for_prompt(text[:TOPIC_SOURCE_CHARS], context="keyword-extraction"))
        try:
            raw = await self._complete_json(
                "keyword_extraction",
                deadline,
                settings.topic_extraction_timeout,
                model=prompt.model_name,
                system=prompt.system_content,
                user=prompt.render(CONTENT=content) + INSTRUCTION_ANCHOR,
                temperature=prompt.temperature,
                max_tokens=prompt.max_tokens,
            )
            topics = _topics_from(parse_ai_json(raw, "keyword_extraction"))
        except Exception as exc:
            logger.warning(f"[keyword_extraction] Topic extraction failed, skipping web search: {exc}")
            return []
        return [t for t in topics[:max_topics] if isinstance(t, str) and len(t) > 2]

    async def web_search_context(self, text: str, cache: SearchCache, deadline: Deadline) -> WebSearchContext | None:
        if not settings.tavily_api_key:
            return None
        topics = dedupe_topics(await self.extract_topics(text, topic_budget(text), deadline))
        if not topics:
            return None
        results = await asyncio.gather(*(self._search(topic, cache) for topic in topics))
        searches = [r for r in results if r is not None and r.results]
        if not searches:
            return None
        return WebSearchContext(searches=searches, formatted=format_web_context(searches))

    # --- Claim verification ---

    async def extract_claims(self, text: str, max_claims: int, deadline: Deadline) -> list[VerifiableClaim]:
        if not text or len(text.strip()) < MIN_CLAIM_TEXT_LENGTH:
            return []
        content = wrap_user_content(sanitize_for_prompt(text[:CLAIM_SOURCE_CHARS], context="claim-extraction"))
        user_prompt = CLAIM_EXTRACTION_USER.format(
            max_claims=max_claims,
            year=datetime.now(timezone.utc).year,
            anchor=INSTRUCTION_ANCHOR,
            content=content,
        )
        try:
            raw = await self._complete_json(
                "claim_extraction",
                deadline,
                settings.ai_call_timeout,
                model=settings.claim_extraction_model,
                system=CLAIM_EXTRACTION_SYSTEM,
                user=user_prompt,
                temperature=0.1,
                max_tokens=1024,
            )
            if not raw:
                return []
            if detect_ai_refusal(raw):
                logger.warning("[claim_extraction] Claim extraction refused by model (content safety)")
                return []
            parsed = parse_ai_json(raw, "claim_extraction")
        except Exception as exc:
            logger.warning(f"[claim_extraction] Claim extraction failed, skipping targeted verification: {exc}")
            return []

        if detect_ai_refusal(parsed):
            logger.warning("[claim_extraction] Claim extraction refused by model (content safety)")
            return []
        raw_claims = parsed if isinstance(parsed, list) else parsed.get("claims") if isinstance(parsed, dict) else None
        if not isinstance(raw_claims, list):
            return []
        return [
            VerifiableClaim(claim=c["claim"], search_query=c["search_query"])
            for c in raw_claims[:max_claims]
            if isinstance(c, dict) and isinstance(c.get("claim"), str) and isinstance(c.get("search_query"), str)
        ]

    async def claim_search_context(self, text: str, cache: SearchCache, deadline: Deadline) -> ClaimSearchContext | None:
        if not settings.tavily_api_key or not settings.openrouter_api_key:
            return None
        max_claims = claim_budget(text)
        if max_claims == 0:
            return None
        claims = await self.extract_claims(text, max_claims, deadline)
        if not claims:
            return None

        results = await asyncio.gather(*(self._search(c.search_query, cache) for c in claims))
        matched = [(claim, result) for claim, result in zip(claims, results) if result is not None]
        if not matched:
            return None
        claims = [claim for claim, _ in matched]
        searches = [result for _, result in matched]
        return ClaimSearchContext(claims=claims, searches=searches, formatted=format_claim_context(claims, searches))

    # --- Tone ---

    async def detect_tone(self, text: str, title: str | None, content_type: str, deadline: Deadline) -> ToneResult:
        prompt = await self._prompts.get("tone_detection")
        if prompt is None:
            return ToneResult()

        title = sanitize_for_prompt(title, context="tone-detection-title", max_length=500) if title else ""
        user_prompt = prompt.render(
            TITLE_LINE=f"Title: {title}\n" if title else "",
            TYPE=content_type,
            CONTENT=wrap_user_content(sanitize_for_prompt(tone_sample(text), context="tone-detection")),
        )
        try:
            raw = await self._complete_json(
                "tone_detection",
                deadline,
                settings.tone_detection_timeout,
                model=prompt.model_name,
                system=prompt.system_content,
                user=user_prompt + INSTRUCTION_ANCHOR,
                temperature=prompt.temperature,
                max_tokens=prompt.max_tokens,
            )
            parsed = parse_ai_json(raw, "tone_detection")
        except Exception as exc:
            logger.warning(f"[tone_detection] Failed (non-fatal): {exc}")
            return ToneResult()

        if not isinstance(parsed, dict):
            return ToneResult()
        label = parsed.get("tone_label")
        directive = parsed.get("tone_directive")
        label = label.strip() if isinstance(label, str) else ""
        directive = directive.strip() if isinstance(directive, str) else ""
        if not label or not directive:
            return ToneResult()
        return ToneResult(label=label, directive=directive)

    # --- Preferences and domain credibility ---

    async def load_preferences(self, user_id: str | None) -> AnalysisPreferences | None:
        if not user_id:
            return None
        try:
            return AnalysisPreferences.from_row(await self._db.get_user_preferences(user_id))
        except Exception as exc:
            logger.warning(f"Failed to load analysis preferences for {user_id}: {exc}")
            return None

    async def domain_credibility(self, url: str) -> str | None:
        domain = extract_domain(url)
        if not domain:
            return None
        try:
            row = await self._db.get_domain(domain)
        except Exception as exc:
            logger.warning(f"Failed to read domain stats for {domain}: {exc}")
            return None
        return credibility_warning(domain, row)

    # --- Phase 1 ---

    async def run(
        self,
        content: dict[str, Any],
        full_text: str,
        cache: SearchCache,
        deadline: Deadline,
    ) -> EnrichmentResult:
        """All enrichment concurrently; the whole phase falls back to defaults on timeout."""
        url = content.get("url") or ""
        content_type = content.get("type") or "article"
        phase = deadline.child(settings.phase1_timeout)

        async def no_claims() -> None:
            return None

        try:
            web, claims, tone, preferences, warning = await asyncio.wait_for(
                asyncio.gather(
                    self.web_search_context(full_text[:10_000], cache, phase),
                    no_claims() if is_entertainment_url(url) else self.claim_search_context(full_text[:15_000], cache, phase),
                    self.detect_tone(full_text, content.get("title"), content_type, phase),
                    self.load_preferences(content.get("user_id")),
                    self.domain_credibility(url),
                ),
                timeout=phase.remaining(),
            )
        except Exception as exc:
            logger.warning(f"Phase 1 did not finish within {settings.phase1_timeout:.0f}s, using defaults: {exc!r}")
            return EnrichmentResult()

        return EnrichmentResult(web=web, claims=claims, tone=tone, preferences=preferences, domain_warning=warning)
