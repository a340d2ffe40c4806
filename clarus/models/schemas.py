from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from clarus.pipeline.languages import is_valid_language


# --- Requests ---


class ProcessContentRequest(BaseModel):
    content_id: str = Field(min_length=1)
    user_id: str | None = None
    language: str = "en"
    force_regenerate: bool = False
    skip_scraping: bool = False

    @field_validator("language")
    @classmethod
    def _supported_language(cls, value: str) -> str:
        if not is_valid_language(value):
            raise ValueError(f"Unsupported language: {value}")
        return value


class Utterance(BaseModel):
    speaker: str | None = None
    text: str = ""
    start: int = 0
    end: int | None = None


class AssemblyAIWebhookPayload(BaseModel):
    transcript_id: str
    status: str
    error: str | None = None
    utterances: list[Utterance] | None = None
    audio_duration: float | None = None


# --- Responses ---


class ProcessContentResponse(BaseModel):
    success: bool
    cached: bool = False
    content_id: str
    language: str
    sections_generated: list[str] = []
    message: str | None = None
    transcript_id: str | None = None
    paywall_warning: str | None = None


class WebhookResponse(BaseModel):
    received: bool = True
    content_id: str | None = None
    status: str


class ErrorResponse(BaseModel):
    error: str
    upgrade_required: bool = False
    tier: str | None = None
