from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from clarus.api.deps import get_pipeline
from clarus.errors import ProcessContentError
from clarus.models.schemas import ErrorResponse, ProcessContentRequest, ProcessContentResponse
from clarus.pipeline.controller import ContentPipeline
from clarus.services.logger import logger

router = APIRouter(prefix="/api/process-content", tags=["content"])


def error_response(exc: ProcessContentError) -> JSONResponse:
    body = ErrorResponse(error=exc.message, upgrade_required=exc.upgrade_required, tier=exc.tier)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@router.post(
    "",
    response_model=ProcessContentResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def process_content(
    request: ProcessContentRequest,
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Run the analysis pipeline for one content item."""
    try:
        result = await pipeline.process_content(
            request.content_id,
            request.user_id,
            request.language,
            request.force_regenerate,
            request.skip_scraping,
        )
    except ProcessContentError as exc:
        if exc.status_code >= 500:
            logger.error(f"process-content failed for {request.content_id}: {exc.message}")
        return error_response(exc)
    return ProcessContentResponse(
        success=result.success,
        cached=result.cached,
        content_id=result.content_id,
        language=result.language,
        sections_generated=result.sections_generated,
        message=result.message,
        transcript_id=result.transcript_id,
        paywall_warning=result.paywall_warning,
    )
