"""Source text acquisition per content type.

Video goes through Supadata, articles, documents and short posts through
Firecrawl, podcasts through AssemblyAI's asynchronous transcription. Any
provider failure is classified, recorded as a ``PROCESSING_FAILED::`` sentinel
in ``content.full_text`` and surfaced as a user-facing ``ProcessContentError``.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from clarus.config import settings
from clarus.errors import (
    ProcessContentError,
    classify_error,
    failure_sentinel,
    is_failure_sentinel,
    user_friendly_error,
)
from clarus.services.logger import logger
from clarus.tools.assemblyai import submit_transcription
from clarus.tools.firecrawl_scraper import ScrapedArticle, scrape_article, scrape_post
from clarus.tools.provider_http import Sleep
from clarus.tools.supadata import get_video_metadata, get_video_transcript

SCRAPED_TYPES = frozenset({"article", "pdf", "document", "x_post"})

VIDEO_ONLY_FIELDS = (
    "author",
    "duration",
    "upload_date",
    "view_count",
    "like_count",
    "channel_id",
    "transcript_languages",
    "raw_youtube_metadata",
)

TRANSCRIPTION_STARTED_MESSAGE = "Podcast transcription started. Analysis will begin when transcription completes."


@dataclass(slots=True)
class Acquisition:
    """``content`` reflects every field written back; ``transcript_id`` means analysis is deferred."""

    content: dict[str, Any]
    transcript_id: str | None = None


def needs_video_metadata(content: dict[str, Any], force_regenerate: bool) -> bool:
    return force_regenerate or not all(
        content.get(key) for key in ("author", "duration", "thumbnail_url", "raw_youtube_metadata")
    )


def needs_scrape(content: dict[str, Any], force_regenerate: bool) -> bool:
    text = content.get("full_text")
    return force_regenerate or not text or is_failure_sentinel(text)


def article_fields(scraped: ScrapedArticle) -> dict[str, Any]:
    fields: dict[str, Any] = {
        key: value
        for key, value in (
            ("title", scraped.title),
            ("full_text", scraped.full_text),
            ("description", scraped.description),
            ("thumbnail_url", scraped.thumbnail_url),
        )
        if value
    }
    fields.update({key: None for key in VIDEO_ONLY_FIELDS})
    return fields


class Acquirer:
    def __init__(
        self,
        db: Any,
        *,
        sleep: Sleep = asyncio.sleep,
        http: httpx.AsyncClient | None = None,
    ):
        self._db = db
        self._sleep = sleep
        self._http = http

    async def acquire(self, content: dict[str, Any], *, language: str, force_regenerate: bool) -> Acquisition:
        content = dict(content)
        content_type = content.get("type") or "article"
        try:
            if content_type == "youtube":
                await self._acquire_video(content, force_regenerate)
            elif content_type == "podcast":
                transcript_id = await self._acquire_podcast(content, language, force_regenerate)
                if transcript_id:
                    return Acquisition(content, transcript_id)
            elif content_type in SCRAPED_TYPES:
                await self._acquire_scraped(content, content_type, force_regenerate)
        except ProcessContentError:
            raise
        except Exception as exc:
            await self._record_failure(content, content_type, exc)
        return Acquisition(content)

    async def _write(self, content: dict[str, Any], fields: dict[str, Any], what: str) -> None:
        if not fields:
            return
        if await self._db.update_content(content["id"], **fields):
            content.update(fields)
        else:
            logger.error(f"Error updating {what} for content {content['id']}")

    async def _acquire_video(self, content: dict[str, Any], force_regenerate: bool) -> None:
        if needs_video_metadata(content, force_regenerate):
            metadata = await get_video_metadata(content["url"], sleep=self._sleep, http=self._http)
            await self._write(content, metadata.non_empty(), "video metadata")

        if not content.get("full_text") or force_regenerate:
            transcript = await get_video_transcript(content["url"], sleep=self._sleep, http=self._http)
            if transcript:
                await self._write(content, {"full_text": transcript}, "video transcript")

    async def _acquire_podcast(self, content: dict[str, Any], language: str, force_regenerate: bool) -> str | None:
        if content.get("full_text") and not force_regenerate:
            return None
        if not settings.assemblyai_api_key:
            logger.error("ASSEMBLYAI_API_KEY not configured")
            raise ProcessContentError("Podcast transcription is not configured.", 500)

        transcript_id = await submit_transcription(content["url"], settings.webhook_url, http=self._http)
        await self._write(content, {"podcast_transcript_id": transcript_id}, "podcast transcript id")
        await self._db.upsert_summary(content["id"], content["user_id"], language, processing_status="transcribing")
        logger.info(f"Podcast transcription {transcript_id} submitted for content {content['id']}")
        return transcript_id

    async def _acquire_scraped(self, content: dict[str, Any], content_type: str, force_regenerate: bool) -> None:
        if not needs_scrape(content, force_regenerate):
            return
        if content_type == "x_post":
            scraped = await scrape_post(content["url"], sleep=self._sleep, http=self._http)
        else:
            scraped = await scrape_article(content["url"], sleep=self._sleep, http=self._http)
        await self._write(content, article_fields(scraped), "article data")

    async def _record_failure(self, content: dict[str, Any], content_type: str, exc: Exception) -> None:
        raw = str(exc) or type(exc).__name__
        label = content_type.upper()
        category = classify_error(raw)
        logger.error(f"Text processing error for content {content['id']}: {raw}")
        await self._db.update_content(content["id"], full_text=failure_sentinel(label, category))
        raise ProcessContentError(user_friendly_error(label, category), 200) from exc
