from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from clarus.config import settings
from clarus.tools.provider_http import request_json
from clarus.tools.supadata import format_timestamp

ASSEMBLYAI_TRANSCRIPT_URL = "https://api.assemblyai.com/v2/transcript"


@dataclass(slots=True)
class FormattedTranscript:
    full_text: str
    duration_seconds: int
    speaker_count: int


async def submit_transcription(
    audio_url: str,
    webhook_url: str,
    *,
    timeout: float = 30.0,
    http: httpx.AsyncClient | None = None,
) -> str:
    """Queue an async transcription job; AssemblyAI calls ``webhook_url`` when done."""
    data = await request_json(
        "POST",
        ASSEMBLYAI_TRANSCRIPT_URL,
        json={
            "audio_url": audio_url,
            "speaker_labels": True,
            "language_detection": True,
            "webhook_url": webhook_url,
        },
        headers={"Authorization": settings.assemblyai_api_key},
        api_name="assemblyai",
        operation="submit",
        label="Podcast transcription",
        timeout=timeout,
        attempts=1,
        http=http,
    )
    return data["id"]


def format_transcript(payload: dict[str, Any]) -> FormattedTranscript:
    """Render diarized utterances as ``[M:SS] Speaker X: text`` blocks."""
    speakers: set[str] = set()
    lines: list[str] = []
    for utterance in payload.get("utterances") or []:
        speaker = str(utterance.get("speaker") or "?")
        speakers.add(speaker)
        lines.append(f"[{format_timestamp(utterance.get('start') or 0)}] Speaker {speaker}: {utterance.get('text') or ''}")
    return FormattedTranscript(
        full_text="\n\n".join(lines),
        duration_seconds=round(payload.get("audio_duration") or 0),
        speaker_count=len(speakers),
    )
