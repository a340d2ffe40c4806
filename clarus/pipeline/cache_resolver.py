"""Cross-user analysis cache.

When another user already analyzed the same URL recently, its text (and, when
a complete summary exists in the requested language, the whole analysis) is
copied instead of being fetched and generated again. Staleness depends on the
content type: articles change, published videos and documents do not.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Callable

from clarus.errors import is_failure_sentinel
from clarus.pipeline.postprocess import update_domain_stats
from clarus.services.logger import log_event, logger
from clarus.tools.web_utils import normalize_url

STALE_DAYS = {
    "article": 3,
    "x_post": 3,
    "youtube": 14,
    "podcast": 14,
    "pdf": 30,
    "document": 30,
}
DEFAULT_STALE_DAYS = 7
MAX_CANDIDATES = 5

SUMMARY_SECTIONS = (
    "brief_overview",
    "triage",
    "truth_check",
    "action_items",
    "mid_length_summary",
    "detailed_summary",
)

METADATA_FIELDS = (
    "title",
    "author",
    "duration",
    "thumbnail_url",
    "description",
    "upload_date",
    "view_count",
    "like_count",
    "channel_id",
    "raw_youtube_metadata",
    "transcript_languages",
)


class CacheKind(StrEnum):
    FULL = "full"
    TEXT_ONLY = "text_only"


@dataclass(slots=True)
class CacheHit:
    kind: CacheKind
    content: dict[str, Any]
    summary: dict[str, Any] | None = None


def stale_days(content_type: str | None) -> int:
    return STALE_DAYS.get(content_type or "", DEFAULT_STALE_DAYS)


def is_cacheable_url(url: str) -> bool:
    return bool(url) and not url.startswith(("pdf://", "file://"))


def metadata_copy(source: dict[str, Any]) -> dict[str, Any]:
    return {key: source[key] for key in METADATA_FIELDS if source.get(key)}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheResolver:
    def __init__(self, db: Any, clock: Callable[[], datetime] = _utcnow):
        self._db = db
        self._clock = clock

    def cutoff(self, content_type: str | None) -> datetime:
        return self._clock() - timedelta(days=stale_days(content_type))

    async def resolve(
        self,
        url: str,
        language: str,
        requesting_user_id: str,
        source_type: str | None,
    ) -> CacheHit | None:
        """Newest candidate with a complete summary in ``language``, else the newest with text."""
        if not is_cacheable_url(url):
            return None

        try:
            candidates = await self._db.find_cache_candidates(
                normalize_url(url),
                exclude_user_id=requesting_user_id,
                since=self.cutoff(source_type),
                limit=MAX_CANDIDATES,
            )
        except Exception as exc:
            logger.warning(f"[cache] Candidate lookup failed for {url}: {exc}")
            return None

        valid = [c for c in candidates if c.get("full_text") and not is_failure_sentinel(c["full_text"])]
        if not valid:
            return None

        try:
            summaries = await self._db.get_complete_summaries([c["id"] for c in valid], language)
        except Exception as exc:
            logger.warning(f"[cache] Summary lookup failed for {url}: {exc}")
            summaries = []
        by_content = {s["content_id"]: s for s in summaries}
        for candidate in valid:
            summary = by_content.get(candidate["id"])
            if summary:
                return CacheHit(CacheKind.FULL, candidate, summary)
        return CacheHit(CacheKind.TEXT_ONLY, valid[0])

    async def clone_full(self, target: dict[str, Any], hit: CacheHit, language: str) -> list[str] | None:
        """Copy text, metadata, summary and claims onto ``target``.

        Returns the cloned section names, or ``None`` when the copy failed and
        the caller should run the normal pipeline.
        """
        source, summary = hit.content, hit.summary or {}
        target_id, user_id = target["id"], target["user_id"]

        updated = await self._db.update_content(
            target_id,
            **metadata_copy(source),
            full_text=source.get("full_text"),
            detected_tone=source.get("detected_tone"),
            tags=source.get("tags"),
            analysis_language=language,
        )
        if not updated:
            logger.error(f"[cache] Failed to update target content {target_id}")
            return None

        sections = {name: summary.get(name) for name in SUMMARY_SECTIONS}
        upserted = await self._db.upsert_summary(
            target_id,
            user_id,
            language,
            **sections,
            model_name=summary.get("model_name"),
            processing_status="complete",
        )
        if not upserted:
            logger.error(f"[cache] Failed to upsert target summary {target_id}")
            return None

        if target.get("url"):
            await update_domain_stats(self._db, target["url"], summary.get("triage"), summary.get("truth_check"))
        await self._clone_claims(source["id"], target_id, user_id)

        log_event("cache_hit", f"Cloned analysis of {source['id']} into {target_id}", language=language)
        return [name for name, value in sections.items() if value is not None]

    async def _clone_claims(self, source_id: str, target_id: str, user_id: str) -> None:
        try:
            claims = await self._db.get_claims(source_id)
            await self._db.insert_claims(
                [
                    {
                        "content_id": target_id,
                        "user_id": user_id,
                        "claim_text": claim.get("claim_text"),
                        "normalized_text": claim.get("normalized_text"),
                        "status": claim.get("status"),
                        "severity": claim.get("severity"),
                        "sources": claim.get("sources"),
                    }
                    for claim in claims
                ]
            )
        except Exception as exc:
            logger.warning(f"[cache] Claims clone failed (non-fatal): {exc}")

    async def copy_text(self, target: dict[str, Any], hit: CacheHit) -> dict[str, Any] | None:
        """Copy text and metadata only; returns the applied fields, ``None`` on failure."""
        fields = {
            **metadata_copy(hit.content),
            "full_text": hit.content.get("full_text"),
            "detected_tone": hit.content.get("detected_tone"),
        }
        if not await self._db.update_content(target["id"], **fields):
            logger.warning("[cache] Text copy failed, proceeding with normal acquisition")
            return None
        return fields
