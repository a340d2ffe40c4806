from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from clarus.config import settings
from clarus.tools.provider_http import Sleep, capped_exponential_backoff, fixed_backoff, request_json

TRANSCRIPT_WINDOW_MS = 30_000


@dataclass(slots=True)
class VideoMetadata:
    title: str | None = None
    author: str | None = None
    duration: int | None = None
    thumbnail_url: str | None = None
    description: str | None = None
    upload_date: str | None = None
    view_count: int | None = None
    like_count: int | None = None
    channel_id: str | None = None
    transcript_languages: list[str] | None = None
    raw_youtube_metadata: dict[str, Any] | None = None

    def non_empty(self) -> dict[str, Any]:
        """Fields worth writing back to the content row."""
        return {key: value for key, value in asdict(self).items() if value}


def _headers() -> dict[str, str]:
    return {"x-api-key": settings.supadata_api_key}


async def get_video_metadata(
    url: str,
    *,
    timeout: float | None = None,
    sleep: Sleep = asyncio.sleep,
    http: httpx.AsyncClient | None = None,
) -> VideoMetadata:
    data = await request_json(
        "GET",
        f"{settings.supadata_base_url}/youtube/video",
        params={"id": url},
        headers=_headers(),
        api_name="supadata",
        operation="metadata",
        label="Video metadata",
        timeout=timeout or settings.video_metadata_timeout,
        backoff=fixed_backoff(1.0),
        sleep=sleep,
        http=http,
    )
    channel = data.get("channel") or {}
    return VideoMetadata(
        title=data.get("title"),
        author=channel.get("name"),
        duration=data.get("duration"),
        thumbnail_url=data.get("thumbnail"),
        description=data.get("description"),
        upload_date=data.get("uploadDate"),
        view_count=data.get("viewCount"),
        like_count=data.get("likeCount"),
        channel_id=channel.get("id"),
        transcript_languages=data.get("transcriptLanguages"),
        raw_youtube_metadata=data,
    )


def format_timestamp(ms: int | float) -> str:
    """``M:SS`` below one hour, ``H:MM:SS`` above."""
    total = int(ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def group_transcript(segments: list[dict[str, Any]]) -> str:
    """Bucket timed segments into 30-second windows rendered as ``[M:SS] text``."""
    windows: dict[int, list[str]] = {}
    for segment in segments:
        start = int(segment.get("offset") or 0) // TRANSCRIPT_WINDOW_MS * TRANSCRIPT_WINDOW_MS
        windows.setdefault(start, []).append(segment.get("text") or "")
    return "\n\n".join(
        f"[{format_timestamp(start)}] {' '.join(texts)}" for start, texts in sorted(windows.items())
    )


async def get_video_transcript(
    url: str,
    *,
    timeout: float | None = None,
    sleep: Sleep = asyncio.sleep,
    http: httpx.AsyncClient | None = None,
) -> str | None:
    data = await request_json(
        "GET",
        f"{settings.supadata_base_url}/youtube/transcript",
        params={"url": url},
        headers=_headers(),
        api_name="supadata",
        operation="transcript",
        label="Video transcript",
        timeout=timeout or settings.video_transcript_timeout,
        backoff=capped_exponential_backoff(1.0, 4.0),
        sleep=sleep,
        http=http,
    )
    content = data.get("content")
    if isinstance(content, list):
        return group_transcript(content) or None
    if isinstance(content, str) and content.strip():
        return content
    return None
