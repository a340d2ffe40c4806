"""Content analysis pipeline controller.

``ContentPipeline.process_content`` drives one content item through
entitlement checks, the cross-user cache, acquisition, moderation, Phase 1
enrichment, Phase 2 section generation and post-processing. Every external
collaborator is injected so the whole flow runs against fakes in tests.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Callable

from clarus.config import settings
from clarus.errors import (
    POLICY_VIOLATION_SENTINEL,
    ContentPolicyViolation,
    PipelineTimeout,
    ProcessContentError,
    is_failure_sentinel,
)
from clarus.pipeline.acquisition import TRANSCRIPTION_STARTED_MESSAGE, Acquirer
from clarus.pipeline.cache_resolver import SUMMARY_SECTIONS, CacheKind, CacheResolver
from clarus.pipeline.deadline import Deadline
from clarus.pipeline.enrichment import EnrichmentResult, Enricher
from clarus.pipeline.languages import language_directive
from clarus.pipeline.metadata import build_metadata_block, build_type_instructions, count_speakers
from clarus.pipeline.paywall import detect_paywall_truncation
from clarus.pipeline.postprocess import (
    apply_citation_gate,
    flag_refusals,
    index_claims,
    skips_fact_check,
    update_domain_stats,
)
from clarus.pipeline.preferences import build_preference_block
from clarus.pipeline.screening import screen_content
from clarus.pipeline.sections import (
    CRITICAL_SECTIONS,
    PromptContext,
    SectionGenerator,
    Sleep,
    truth_check_context,
)
from clarus.services import supabase
from clarus.services.entitlements import Entitlements
from clarus.services.logger import log_pipeline_step, logger
from clarus.services.prompt_store import PromptStore
from clarus.tools import tavily_search
from clarus.tools.tavily_search import SearchCache

PARTIAL_MESSAGE = "Content partially processed (timeout)."
NO_TEXT_MESSAGE = "Content processed, but no valid text found for summary."
COMPLETE_MESSAGE = "Content processed successfully."
CACHED_MESSAGE = "Content analysis served from cache."
ALREADY_ANALYZED_MESSAGE = "Content already analyzed."
NO_SECTIONS_MESSAGE = "Content could not be analyzed: no section was generated."
REFUSED_OVERVIEW = "This content could not be analyzed because it may violate our content policy."
BLOCKED_MESSAGE = "This content cannot be analyzed because it may contain prohibited material."

PLACEHOLDER_TITLE_PREFIXES = ("Processing:", "Analyzing:")


class PipelineStatus(StrEnum):
    NONE = "none"
    TRANSCRIBING = "transcribing"
    ENRICHING = "enriching"
    GENERATING = "generating"
    PARTIAL = "partial"
    COMPLETE = "complete"
    REFUSED = "refused"
    ERROR = "error"


@dataclass(slots=True)
class ProcessContentResult:
    success: bool
    content_id: str
    language: str
    cached: bool = False
    sections_generated: list[str] = field(default_factory=list)
    message: str | None = None
    transcript_id: str | None = None
    paywall_warning: str | None = None


@dataclass
class _Run:
    """Mutable state of one pipeline pass."""

    content: dict[str, Any]
    user_id: str
    language: str
    full_text: str
    deadline: Deadline
    generator: SectionGenerator
    search_cache: SearchCache = field(default_factory=SearchCache)
    ctx: PromptContext = field(default_factory=PromptContext)
    enrichment: EnrichmentResult = field(default_factory=EnrichmentResult)
    values: dict[str, Any] = field(default_factory=dict)
    generated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def content_id(self) -> str:
        return self.content["id"]

    @property
    def content_type(self) -> str:
        return self.content.get("type") or "article"

    @property
    def url(self) -> str:
        return self.content.get("url") or ""


def title_needs_fixing(title: str | None) -> bool:
    return not title or title.startswith(PLACEHOLDER_TITLE_PREFIXES)


def usage_field(content_type: str | None) -> str:
    return "podcast_analyses_count" if content_type == "podcast" else "analyses_count"


class ContentPipeline:
    """Analysis pipeline with injectable collaborators.

    ``db`` exposes the async functions of ``clarus.services.supabase``;
    ``llm`` exposes ``complete(...)`` like ``OpenRouterChatAdapter``;
    ``search`` has the signature of ``tavily_search.search``.
    """

    def __init__(
        self,
        db: Any = supabase,
        llm: Any = None,
        *,
        search: Callable[..., Any] = tavily_search.search,
        entitlements: Entitlements | None = None,
        prompts: PromptStore | None = None,
        cache_resolver: CacheResolver | None = None,
        acquirer: Acquirer | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._db = db
        self._llm = llm
        self._search = search
        self._entitlements = entitlements or Entitlements(db)
        self._prompts = prompts or PromptStore(db)
        self._cache = cache_resolver or CacheResolver(db)
        self._acquirer = acquirer or Acquirer(db, sleep=sleep)
        self._sleep = sleep
        self._clock = clock

    @property
    def llm(self) -> Any:
        if self._llm is None:
            from clarus.llm_client import client

            self._llm = client()
        return self._llm

    # --- Entry point ---

    async def process_content(
        self,
        content_id: str,
        user_id: str | None = None,
        language: str = "en",
        force_regenerate: bool = False,
        skip_scraping: bool = False,
        *,
        count_usage: bool = True,
    ) -> ProcessContentResult:
        """Run the pipeline for one content item.

        ``count_usage=False`` is used when re-entering after podcast
        transcription: the analysis was already counted when it was submitted.
        Raises ``ProcessContentError`` for every user-visible failure.
        """
        check_configuration()

        content = await self._db.get_content(content_id)
        if not content:
            logger.error(f"Error fetching content by ID {content_id}")
            raise ProcessContentError("Content not found", 404)
        if user_id and content.get("user_id") != user_id:
            raise ProcessContentError("Access denied", 403)

        owner = content.get("user_id")
        if owner and language != "en":
            await self._check_language(owner, language)

        if not force_regenerate:
            existing = await self._existing_analysis(content_id, language)
            if existing is not None:
                return existing

        if owner and count_usage and not force_regenerate:
            await self._check_usage(content, owner)

        if force_regenerate:
            await self._db.delete_summary(content_id, language)

        if not force_regenerate and owner:
            cached = await self._try_cache(content, language)
            if isinstance(cached, ProcessContentResult):
                return cached
            content = cached

        if not skip_scraping:
            acquisition = await self._acquirer.acquire(content, language=language, force_regenerate=force_regenerate)
            content = acquisition.content
            if acquisition.transcript_id:
                log_pipeline_step(content_id, PipelineStatus.TRANSCRIBING, "started", {"transcript_id": acquisition.transcript_id})
                return ProcessContentResult(
                    success=True,
                    content_id=content_id,
                    language=language,
                    message=TRANSCRIPTION_STARTED_MESSAGE,
                    transcript_id=acquisition.transcript_id,
                )

        full_text = content.get("full_text")
        if not full_text or is_failure_sentinel(full_text):
            logger.warning(f"No valid full text available for content ID {content_id}. Reason: {full_text}")
            return ProcessContentResult(success=True, content_id=content_id, language=language, message=NO_TEXT_MESSAGE)

        await self._moderate(content, full_text, language)

        if not owner:
            logger.error(f"user_id is missing on content {content_id}. Cannot save summary.")
            raise ProcessContentError("Internal error: user_id missing from content.", 500)

        paywall_warning = detect_paywall_truncation(content.get("url") or "", full_text, content.get("type") or "article")
        run = _Run(
            content=content,
            user_id=owner,
            language=language,
            full_text=full_text,
            deadline=Deadline(settings.pipeline_timeout, self._clock),
            generator=SectionGenerator(self.llm, self._prompts, sleep=self._sleep, content_id=content_id, user_id=owner),
        )

        try:
            await asyncio.wait_for(self._analyze(run), timeout=run.deadline.remaining())
        except (asyncio.TimeoutError, PipelineTimeout):
            logger.warning(f"Pipeline timeout for {content_id}, saving partial results")
            await self._db.upsert_summary(content_id, owner, language, processing_status=PipelineStatus.PARTIAL.value)
            log_pipeline_step(content_id, PipelineStatus.PARTIAL, "timeout", {"sections": run.generated})
            return ProcessContentResult(
                success=True,
                content_id=content_id,
                language=language,
                sections_generated=list(run.generated),
                message=PARTIAL_MESSAGE,
                paywall_warning=paywall_warning,
            )

        if not run.generated:
            logger.error(f"No section persisted for {content_id}, failed: {run.failed}")
            await self._db.upsert_summary(content_id, owner, language, processing_status=PipelineStatus.ERROR.value)
            log_pipeline_step(content_id, PipelineStatus.ERROR, "no_sections", {"failed": run.failed})
            return ProcessContentResult(
                success=False,
                content_id=content_id,
                language=language,
                message=NO_SECTIONS_MESSAGE,
                paywall_warning=paywall_warning,
            )

        await self._db.upsert_summary(content_id, owner, language, processing_status=PipelineStatus.COMPLETE.value)
        await self._db.update_content(content_id, analysis_language=language)
        log_pipeline_step(content_id, PipelineStatus.COMPLETE, "success", {"sections": run.generated, "failed": run.failed})
        return ProcessContentResult(
            success=True,
            content_id=content_id,
            language=language,
            sections_generated=list(run.generated),
            message=COMPLETE_MESSAGE,
            paywall_warning=paywall_warning,
        )

    # --- Gates ---

    async def _check_language(self, owner: str, language: str) -> None:
        allowed, tier = await self._entitlements.language_allowed(owner, language)
        if not allowed:
            raise ProcessContentError("Multi-language analysis requires a Starter plan or higher.", 403, True, tier)

    async def _check_usage(self, content: dict[str, Any], owner: str) -> None:
        field_name = usage_field(content.get("type"))
        check = await self._entitlements.check_and_increment(owner, field_name)
        if not check.allowed:
            label = "podcast analysis" if content.get("type") == "podcast" else "analysis"
            raise ProcessContentError(
                f"Monthly {label} limit reached ({check.limit}). Upgrade your plan for more.", 403, True, check.tier
            )

    async def _existing_analysis(self, content_id: str, language: str) -> ProcessContentResult | None:
        """A no-op result when a complete summary already exists for this language."""
        summaries = await self._db.get_complete_summaries([content_id], language)
        if not summaries:
            return None
        sections = [name for name in SUMMARY_SECTIONS if summaries[0].get(name) is not None]
        log_pipeline_step(content_id, PipelineStatus.COMPLETE, "already_complete", {"sections": sections})
        return ProcessContentResult(
            success=True,
            cached=True,
            content_id=content_id,
            language=language,
            sections_generated=sections,
            message=ALREADY_ANALYZED_MESSAGE,
        )

    async def _try_cache(self, content: dict[str, Any], language: str) -> ProcessContentResult | dict[str, Any]:
        """A finished result for a FULL hit, otherwise the (possibly text-filled) content row."""
        hit = await self._cache.resolve(content.get("url") or "", language, content["user_id"], content.get("type"))
        if hit is None:
            return content

        if hit.kind is CacheKind.FULL:
            sections = await self._cache.clone_full(content, hit, language)
            if sections is not None:
                log_pipeline_step(content["id"], "cache_hit", "success", {"source": hit.content.get("id")})
                return ProcessContentResult(
                    success=True,
                    cached=True,
                    content_id=content["id"],
                    language=language,
                    sections_generated=sections,
                    message=CACHED_MESSAGE,
                )
            logger.warning("[cache] Clone failed, falling back to normal pipeline")
            return content

        copied = await self._cache.copy_text(content, hit)
        return {**content, **copied} if copied else content

    async def _moderate(self, content: dict[str, Any], full_text: str, language: str) -> None:
        result = await screen_content(
            self._db,
            url=content.get("url") or "",
            text=full_text,
            content_id=content["id"],
            user_id=content.get("user_id"),
            content_type=content.get("type"),
        )
        if not result.blocked:
            return

        reasons = "; ".join(flag.reason for flag in result.flags)
        logger.warning(f"MODERATION: Content blocked for {content.get('url')}: {reasons}")
        await self._db.update_content(content["id"], full_text=POLICY_VIOLATION_SENTINEL)
        if content.get("user_id"):
            await self._db.upsert_summary(
                content["id"],
                content["user_id"],
                language,
                processing_status=PipelineStatus.REFUSED.value,
                brief_overview=REFUSED_OVERVIEW,
            )
        log_pipeline_step(content["id"], PipelineStatus.REFUSED, "blocked", {"reasons": reasons})
        raise ContentPolicyViolation(BLOCKED_MESSAGE)

    # --- Analysis ---

    async def _analyze(self, run: _Run) -> None:
        log_pipeline_step(run.content_id, PipelineStatus.ENRICHING, "started")
        enricher = Enricher(
            self.llm,
            self._prompts,
            self._db,
            search=self._search,
            content_id=run.content_id,
            user_id=run.user_id,
        )
        run.enrichment = await enricher.run(run.content, run.full_text, run.search_cache, run.deadline)
        if not run.enrichment.tone.is_neutral:
            await self._db.update_content(run.content_id, detected_tone=run.enrichment.tone.label)

        run.ctx = PromptContext(
            content_type=run.content_type,
            tone_directive=run.enrichment.tone.directive,
            language_directive=language_directive(run.language),
            preferences_block=build_preference_block(run.enrichment.preferences),
            metadata_block=build_metadata_block(run.content),
            type_instructions=build_type_instructions(
                run.content_type,
                duration=run.content.get("duration"),
                speaker_count=count_speakers(run.full_text),
            ),
            web_context=run.enrichment.web_context,
        )
        if run.deadline.expired:
            raise PipelineTimeout("deadline elapsed after enrichment")

        log_pipeline_step(run.content_id, PipelineStatus.GENERATING, "started")
        await self._generate_sections(run)
        if run.deadline.expired:
            raise PipelineTimeout("deadline elapsed after section generation")

        await self._post_process(run)
        await self._self_heal(run)

    async def _persist(self, run: _Run, section: str, value: Any) -> None:
        if await self._db.upsert_summary(run.content_id, run.user_id, run.language, **{section: value}):
            run.generated.append(section)

    async def _section(self, run: _Run, section: str, ctx: PromptContext | None = None) -> Any:
        try:
            value = await run.generator.generate(section, run.full_text, ctx or run.ctx, run.deadline)
        except PipelineTimeout:
            raise
        except Exception as exc:
            logger.warning(f"[{section}] Generation failed: {exc}")
            run.failed.append(section)
            return None
        run.values[section] = value
        return value

    async def _generate_sections(self, run: _Run) -> None:
        db = self._db

        async def persisted(section: str) -> None:
            value = await self._section(run, section)
            if value is not None:
                await self._persist(run, section, value)

        async def mid_summary() -> None:
            value = await self._section(run, "mid_length_summary")
            if value is None:
                return
            summary, title = value
            if title and title_needs_fixing(run.content.get("title")):
                await db.update_content(run.content_id, title=title)
            await self._persist(run, "mid_length_summary", summary)

        async def auto_tags() -> None:
            tags = await self._section(run, "auto_tags")
            if tags:
                await db.update_content(run.content_id, tags=tags)
            else:
                logger.warning("[auto_tags] Auto-tag generation failed or empty")

        truth_ctx = replace(
            run.ctx,
            web_context=truth_check_context(
                run.enrichment.web_context, run.enrichment.claim_context, run.enrichment.domain_warning
            ),
        )

        names = ("brief_overview", "triage", "mid_length_summary", "detailed_summary", "auto_tags", "truth_check", "action_items")
        results = await asyncio.gather(
            persisted("brief_overview"),
            persisted("triage"),
            mid_summary(),
            persisted("detailed_summary"),
            auto_tags(),
            self._section(run, "truth_check", truth_ctx),
            self._section(run, "action_items"),
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, PipelineTimeout):
                raise result
            if isinstance(result, Exception):
                logger.error(f"Phase 2 section {name} crashed unexpectedly: {result!r}")
                if name not in run.failed:
                    run.failed.append(name)

    async def _post_process(self, run: _Run) -> None:
        triage = run.values.get("triage")
        truth_check = None
        if skips_fact_check(triage):
            logger.info(f"Skipping truth check and action items for {triage.get('content_category')} content")
        else:
            raw_truth = run.values.get("truth_check")
            if raw_truth is not None:
                truth_check = apply_citation_gate(raw_truth, run.search_cache.available_sources())
                await self._persist(run, "truth_check", truth_check)
            elif "truth_check" not in run.failed:
                run.failed.append("truth_check")
            if run.values.get("action_items") is not None:
                await self._persist(run, "action_items", run.values["action_items"])
        run.values["truth_check"] = truth_check

        await flag_refusals(
            self._db,
            run.values,
            url=run.url,
            content_id=run.content_id,
            user_id=run.user_id,
            content_type=run.content_type,
            text=run.full_text,
        )
        if run.url and triage:
            await update_domain_stats(self._db, run.url, triage, truth_check)
        await index_claims(self._db, run.content_id, run.user_id, truth_check)

    async def _self_heal(self, run: _Run) -> None:
        """One more attempt per failed critical section, on the full text without web context."""
        failures = [s for s in CRITICAL_SECTIONS if s in run.failed]
        if not failures:
            return
        logger.info(f"Self-healing {failures} for {run.content_id}")
        heal_ctx = run.ctx.for_self_heal()

        async def heal(section: str) -> None:
            try:
                value = await run.generator.generate(section, run.full_text, heal_ctx, run.deadline, full_text=True)
            except PipelineTimeout:
                raise
            except Exception as exc:
                logger.warning(f"[{section}] Self-heal failed: {exc}")
                return
            await self._persist(run, section, value)
            run.failed.remove(section)
            if section == "triage" and run.url:
                await update_domain_stats(self._db, run.url, value, run.values.get("truth_check"))

        await asyncio.gather(*(heal(section) for section in failures))


def check_configuration() -> None:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise ProcessContentError("Server configuration error: Missing database credentials.", 500)
    if not settings.supadata_api_key or not settings.openrouter_api_key or not settings.firecrawl_api_key:
        raise ProcessContentError("Server configuration error: Missing API keys.", 500)
