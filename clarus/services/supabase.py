from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from supabase import Client, ClientOptions, create_client

from clarus.config import settings
from clarus.services.logger import log_db_operation, logger


def get_client() -> Client:
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
        options=ClientOptions(schema=settings.supabase_schema),
    )


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


CONTENT_COLUMNS = (
    "id, url, type, user_id, full_text, title, author, duration, thumbnail_url, description, "
    "upload_date, view_count, like_count, channel_id, raw_youtube_metadata, transcript_languages, "
    "detected_tone, tags, analysis_language, podcast_transcript_id, date_added"
)

SUMMARY_COLUMNS = (
    "id, content_id, user_id, language, brief_overview, triage, truth_check, action_items, "
    "mid_length_summary, detailed_summary, model_name, processing_status, updated_at"
)


# --- Content ---


async def get_content(content_id: str) -> dict[str, Any] | None:
    result = await _execute(client().table("content").select(CONTENT_COLUMNS).eq("id", content_id).limit(1))
    return result.data[0] if result.data else None


async def get_content_by_transcript_id(transcript_id: str) -> dict[str, Any] | None:
    result = await _execute(
        client()
        .table("content")
        .select("id, user_id, url, type")
        .eq("podcast_transcript_id", transcript_id)
        .limit(1)
    )
    return result.data[0] if result.data else None


async def update_content(content_id: str, **fields: Any) -> bool:
    try:
        await _execute(client().table("content").update(fields).eq("id", content_id))
    except Exception as exc:
        log_db_operation("update", "content", "error", details=content_id, error=str(exc))
        return False
    log_db_operation("update", "content", "success", details=f"{content_id}: {sorted(fields)}")
    return True


async def find_cache_candidates(
    url: str,
    *,
    exclude_user_id: str,
    since: datetime,
    limit: int = 5,
) -> list[dict[str, Any]]:
    result = await _execute(
        client()
        .table("content")
        .select(CONTENT_COLUMNS)
        .eq("url", url)
        .not_.is_("full_text", "null")
        .neq("user_id", exclude_user_id)
        .gte("date_added", since.isoformat())
        .order("date_added", desc=True)
        .limit(limit)
    )
    return result.data or []


# --- Summaries ---


async def get_complete_summaries(content_ids: list[str], language: str) -> list[dict[str, Any]]:
    if not content_ids:
        return []
    result = await _execute(
        client()
        .table("summaries")
        .select(SUMMARY_COLUMNS)
        .in_("content_id", content_ids)
        .eq("language", language)
        .eq("processing_status", "complete")
    )
    return result.data or []


async def upsert_summary(content_id: str, user_id: str, language: str, **fields: Any) -> bool:
    row = {
        "content_id": content_id,
        "user_id": user_id,
        "language": language,
        "updated_at": _now_iso(),
        **fields,
    }
    try:
        await _execute(client().table("summaries").upsert(row, on_conflict="content_id,language"))
    except Exception as exc:
        log_db_operation("upsert", "summaries", "error", details=content_id, error=str(exc))
        return False
    log_db_operation("upsert", "summaries", "success", details=f"{content_id}/{language}: {sorted(fields)}")
    return True


async def delete_summary(content_id: str, language: str) -> None:
    await _execute(
        client().table("summaries").delete().eq("content_id", content_id).eq("language", language)
    )


# --- Claims ---


async def get_claims(content_id: str) -> list[dict[str, Any]]:
    result = await _execute(
        client()
        .table("claims")
        .select("claim_text, normalized_text, status, severity, sources")
        .eq("content_id", content_id)
    )
    return result.data or []


async def insert_claims(rows: list[dict[str, Any]]) -> None:
    if rows:
        await _execute(client().table("claims").insert(rows))


async def delete_claims(content_id: str) -> None:
    await _execute(client().table("claims").delete().eq("content_id", content_id))


# --- Domains ---


async def get_domain(domain: str) -> dict[str, Any] | None:
    result = await _execute(
        client()
        .table("domains")
        .select(
            "total_analyses, accurate_count, mostly_accurate_count, mixed_count, "
            "questionable_count, unreliable_count, avg_quality_score"
        )
        .eq("domain", domain)
        .limit(1)
    )
    return result.data[0] if result.data else None


async def upsert_domain_stats(domain: str, quality_score: float, buckets: dict[str, int]) -> None:
    """Atomic aggregate update via RPC, with a plain upsert fallback."""
    params = {"p_domain": domain, "p_quality_score": quality_score}
    params.update({f"p_{bucket}": count for bucket, count in buckets.items()})
    try:
        await _execute(client().rpc("upsert_domain_stats", params))
        return
    except Exception as exc:
        logger.warning(f"Domain stats RPC failed, using fallback: {exc}")

    row: dict[str, Any] = {
        "domain": domain,
        "total_analyses": 1,
        "total_quality_score": quality_score,
        "last_seen": _now_iso(),
    }
    for bucket, count in buckets.items():
        if count:
            row[f"{bucket}_count"] = count
    await _execute(client().table("domains").upsert(row, on_conflict="domain"))


# --- Prompts / preferences / moderation ---


async def get_active_prompt(prompt_type: str) -> dict[str, Any] | None:
    result = await _execute(
        client()
        .table("analysis_prompts")
        .select(
            "prompt_type, system_content, user_content_template, model_name, temperature, "
            "max_tokens, expect_json, use_web_search"
        )
        .eq("prompt_type", prompt_type)
        .eq("is_active", True)
        .limit(1)
    )
    return result.data[0] if result.data else None


async def get_user_preferences(user_id: str) -> dict[str, Any] | None:
    result = await _execute(
        client()
        .table("user_analysis_preferences")
        .select("analysis_mode, expertise_level, focus_areas, is_active")
        .eq("user_id", user_id)
        .limit(1)
    )
    return result.data[0] if result.data else None


async def insert_flag(row: dict[str, Any]) -> None:
    await _execute(client().table("flagged_content").insert(row))


# --- Users / usage ---


async def get_user_tier(user_id: str) -> str | None:
    result = await _execute(client().table("users").select("tier").eq("id", user_id).limit(1))
    return result.data[0].get("tier") if result.data else None


async def increment_usage_if_allowed(user_id: str, period: str, field: str, limit: int | None) -> dict[str, Any]:
    """Atomic check-and-increment; returns ``{allowed, current_count}``."""
    result = await _execute(
        client().rpc(
            "increment_usage_if_allowed",
            {"p_user_id": user_id, "p_period": period, "p_field": field, "p_limit": limit},
        )
    )
    data = result.data
    if isinstance(data, list):
        data = data[0] if data else {}
    return data or {}
