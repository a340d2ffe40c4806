"""Phase 2 section generation.

Each section renders its ``analysis_prompts`` template, calls the chat model
with a per-section retry budget and parses the output into the shape the
section stores. Failures surface as exceptions so the controller can settle
all sections with ``asyncio.gather(..., return_exceptions=True)``.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Awaitable, Callable

from clarus.config import settings
from clarus.errors import NonRetryableError, ParseError, TransientError
from clarus.pipeline.deadline import Deadline
from clarus.pipeline.parsing import (
    parse_action_items,
    parse_ai_json,
    parse_mid_summary,
    parse_tags,
    parse_text,
    parse_triage,
    parse_truth_check,
)
from clarus.pipeline.sanitizer import INSTRUCTION_ANCHOR, detect_output_leakage, sanitize_for_prompt, wrap_user_content
from clarus.services.logger import log_llm_call, logger
from clarus.services.prompt_store import PromptStore

NEUTRAL_TONE_DIRECTIVE = (
    "The content uses a standard informational tone. Write your analysis in a clear, neutral voice."
)
ENGLISH_DIRECTIVE = "Write your analysis in English."

TRUTH_CHECK_CONTEXT_LIMIT = 8000
CITATION_INSTRUCTION = (
    '\n\nIMPORTANT: For each issue you identify, include a "sources" array with citation objects '
    'containing "url" and "title" for verification. Use URLs from the web verification context above '
    'when available. Format: "sources": [{"url": "https://...", "title": "Source Title"}]. '
    "If no source URL is available for an issue, omit the sources field for that issue."
)

RATE_LIMIT_BACKOFF_SECONDS = 10.0
TRANSIENT_BACKOFF_SECONDS = 5.0

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class SectionSpec:
    name: str
    max_chars: int
    parser: Callable[[Any], Any]
    attempts: int = 3
    web: bool = True
    tone: bool = False
    preferences: bool = False
    metadata: bool = True
    language: bool = True
    force_json: bool = False


SECTION_SPECS: dict[str, SectionSpec] = {
    "brief_overview": SectionSpec(
        "brief_overview", 8_000, partial(parse_text, section="brief_overview"), tone=True
    ),
    "triage": SectionSpec("triage", 10_000, parse_triage, preferences=True),
    "mid_length_summary": SectionSpec(
        "mid_length_summary", 30_000, parse_mid_summary, web=False, tone=True, force_json=True
    ),
    "detailed_summary": SectionSpec(
        "detailed_summary", 30_000, partial(parse_text, section="detailed_summary"), tone=True, preferences=True
    ),
    "auto_tags": SectionSpec(
        "auto_tags", 10_000, parse_tags, attempts=2, web=False, metadata=False, language=False
    ),
    "truth_check": SectionSpec("truth_check", 20_000, parse_truth_check, preferences=True),
    "action_items": SectionSpec("action_items", 15_000, parse_action_items, preferences=True),
}

CRITICAL_SECTIONS = ("brief_overview", "triage", "detailed_summary")


@dataclass(frozen=True, slots=True)
class PromptContext:
    """Everything besides the content itself that a section prompt can reference."""

    content_type: str = "article"
    tone_directive: str | None = None
    language_directive: str | None = None
    preferences_block: str = ""
    metadata_block: str = ""
    type_instructions: str = ""
    web_context: str | None = None

    def for_self_heal(self) -> "PromptContext":
        """Tone and language only: no web context, preferences or metadata."""
        return replace(self, preferences_block="", metadata_block="", type_instructions="", web_context=None)


def truth_check_context(
    web_context: str | None,
    claim_context: str | None,
    domain_warning: str | None,
) -> str | None:
    """Credibility warning, web context and claim context, capped, plus the citation protocol."""
    combined = (f"{domain_warning}\n\n" if domain_warning else "") + (web_context or "") + (claim_context or "")
    combined = combined[:TRUTH_CHECK_CONTEXT_LIMIT]
    return combined + CITATION_INSTRUCTION if combined else None


def render_user_prompt(template_prompt: Any, spec: SectionSpec, text: str, ctx: PromptContext, use_web: bool) -> str:
    content = wrap_user_content(sanitize_for_prompt(text, context=f"analysis-{spec.name}"))
    rendered = template_prompt.render(
        TONE=(ctx.tone_directive if spec.tone else None) or NEUTRAL_TONE_DIRECTIVE,
        LANGUAGE=(ctx.language_directive if spec.language else None) or ENGLISH_DIRECTIVE,
        USER_PREFERENCES=ctx.preferences_block if spec.preferences else "",
        METADATA=ctx.metadata_block if spec.metadata else "",
        TYPE_INSTRUCTIONS=ctx.type_instructions if spec.metadata else "",
        CONTENT=content,
        TEXT_TO_SUMMARIZE=content,
        TYPE=ctx.content_type or "article",
    )
    if use_web and spec.web and ctx.web_context and template_prompt.use_web_search is not False:
        rendered += ctx.web_context
    return rendered + INSTRUCTION_ANCHOR


def backoff_seconds(error: Exception, attempt: int) -> float:
    base = RATE_LIMIT_BACKOFF_SECONDS if isinstance(error, TransientError) and error.rate_limited else TRANSIENT_BACKOFF_SECONDS
    return base * 2 ** (attempt - 1)


class SectionGenerator:
    """Generate one analysis section with retries.

    ``llm`` is any object exposing ``complete(...)`` like
    ``OpenRouterChatAdapter``; ``sleep`` is injectable so tests skip the
    backoff delays.
    """

    def __init__(
        self,
        llm: Any,
        prompts: PromptStore,
        *,
        sleep: Sleep = asyncio.sleep,
        content_id: str | None = None,
        user_id: str | None = None,
    ):
        self._llm = llm
        self._prompts = prompts
        self._sleep = sleep
        self._content_id = content_id
        self._user_id = user_id

    async def generate(
        self,
        section: str,
        text: str,
        ctx: PromptContext,
        deadline: Deadline,
        *,
        full_text: bool = False,
    ) -> Any:
        spec = SECTION_SPECS[section]
        prompt = await self._prompts.get(section)
        if prompt is None:
            raise NonRetryableError(f"Prompt not found for type: {section}")

        source = text if full_text else text[: spec.max_chars]
        user_prompt = render_user_prompt(prompt, spec, source, ctx, use_web=not full_text)
        expect_json = prompt.expect_json or spec.force_json
        last_error: Exception | None = None

        for attempt in range(1, spec.attempts + 1):
            started = time.perf_counter()
            try:
                completion = await self._llm.complete(
                    model=prompt.model_name,
                    system=prompt.system_content,
                    user=user_prompt,
                    temperature=prompt.temperature,
                    max_tokens=prompt.max_tokens,
                    json_mode=expect_json,
                    timeout=deadline.bound(settings.ai_call_timeout),
                )
                raw = completion.content
                if not raw:
                    raise TransientError("No content in API response")
                detect_output_leakage(raw, section)
                value = spec.parser(parse_ai_json(raw, section) if expect_json else raw)
            except NonRetryableError as exc:
                self._log_call(prompt.model_name, section, started, error=str(exc))
                logger.warning(f"[{section}] Attempt {attempt} failed without retry: {exc}")
                raise
            except (TransientError, ParseError) as exc:
                last_error = exc
                self._log_call(prompt.model_name, section, started, error=str(exc))
                logger.warning(f"[{section}] Attempt {attempt}/{spec.attempts} failed: {exc}")
                if attempt < spec.attempts:
                    await self._sleep(backoff_seconds(exc, attempt))
                continue

            self._log_call(
                completion.model,
                section,
                started,
                input_tokens=completion.usage.input_tokens,
                output_tokens=completion.usage.output_tokens,
            )
            if attempt > 1:
                logger.info(f"[{section}] Succeeded on attempt {attempt}/{spec.attempts}")
            return value

        logger.error(f"[{section}] All {spec.attempts} attempts failed. Last error: {last_error}")
        assert last_error is not None
        raise last_error

    def _log_call(
        self,
        model: str,
        section: str,
        started: float,
        *,
        input_tokens: int = 0,
        output_tokens: int = 0,
        error: str | None = None,
    ) -> None:
        log_llm_call(
            model=model,
            caller=section,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.perf_counter() - started) * 1000),
            status="error" if error else "success",
            error=error,
            content_id=self._content_id,
            user_id=self._user_id,
        )
