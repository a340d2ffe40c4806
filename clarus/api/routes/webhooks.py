from __future__ import annotations

import secrets
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from clarus.api.deps import get_db, get_pipeline
from clarus.config import settings
from clarus.errors import ErrorCategory, ProcessContentError, failure_sentinel
from clarus.models.schemas import AssemblyAIWebhookPayload, WebhookResponse
from clarus.pipeline.controller import ContentPipeline, PipelineStatus
from clarus.services.logger import log_api_usage, log_pipeline_step, logger
from clarus.tools.assemblyai import format_transcript

router = APIRouter(prefix="/api/assemblyai-webhook", tags=["webhooks"])


def token_matches(token: str | None) -> bool:
    expected = settings.assemblyai_webhook_token
    if not expected:
        return True
    return bool(token) and secrets.compare_digest(token, expected)


async def resume_analysis(pipeline: ContentPipeline, content_id: str) -> None:
    """Analyze a freshly transcribed podcast. Usage was counted on submission."""
    try:
        result = await pipeline.process_content(content_id, None, count_usage=False)
    except ProcessContentError as exc:
        logger.error(f"Post-transcription analysis failed for {content_id}: {exc.message}")
        return
    logger.info(f"Post-transcription analysis for {content_id}: {result.message}")


async def _record_transcription_failure(db: Any, content: dict[str, Any], category: ErrorCategory, reason: str) -> None:
    logger.error(f"Transcription failed for content {content['id']}: {reason}")
    await db.update_content(content["id"], full_text=failure_sentinel("TRANSCRIPTION", category))
    if content.get("user_id"):
        await db.upsert_summary(
            content["id"],
            content["user_id"],
            content.get("analysis_language") or "en",
            processing_status=PipelineStatus.ERROR.value,
        )
    log_pipeline_step(content["id"], PipelineStatus.ERROR, category.value, {"reason": reason})


@router.post("", response_model=WebhookResponse)
async def assemblyai_webhook(
    payload: AssemblyAIWebhookPayload,
    background_tasks: BackgroundTasks,
    token: str | None = None,
    db: Any = Depends(get_db),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Completion callback for podcast transcription jobs."""
    if not token_matches(token):
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    content = await db.get_content_by_transcript_id(payload.transcript_id)
    if not content:
        raise HTTPException(status_code=404, detail="Unknown transcript")
    if content.get("type") != "podcast":
        raise HTTPException(status_code=400, detail="Content is not a podcast")

    if payload.status == "error":
        await _record_transcription_failure(
            db, content, ErrorCategory.TRANSCRIPTION_FAILED, payload.error or "unknown error"
        )
        log_api_usage("assemblyai", "transcribe", status="error", error=payload.error or "unknown error")
        return WebhookResponse(content_id=content["id"], status="error")

    transcript = format_transcript(payload.model_dump())
    if not transcript.full_text.strip():
        await _record_transcription_failure(db, content, ErrorCategory.TRANSCRIPTION_EMPTY, "empty transcript")
        return WebhookResponse(content_id=content["id"], status="error")

    await db.update_content(content["id"], full_text=transcript.full_text, duration=transcript.duration_seconds)
    log_api_usage(
        "assemblyai",
        "transcribe",
        audio_duration=transcript.duration_seconds,
        speakers=transcript.speaker_count,
    )
    background_tasks.add_task(resume_analysis, pipeline, content["id"])
    return WebhookResponse(content_id=content["id"], status="processing")
