"""Tier lookups and monthly usage quotas.

The quota counter lives in the database; ``increment_usage_if_allowed`` checks
and increments in one statement so concurrent requests cannot overshoot.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

# None means unlimited.
TIER_LIMITS: dict[str, dict[str, int | None]] = {
    "free": {"analyses_count": 5, "podcast_analyses_count": 1},
    "starter": {"analyses_count": 50, "podcast_analyses_count": 10},
    "pro": {"analyses_count": None, "podcast_analyses_count": None},
}

MULTI_LANGUAGE_TIERS = frozenset({"starter", "pro"})


@dataclass(slots=True)
class UsageCheck:
    allowed: bool
    tier: str
    limit: int | None = None
    current_count: int | None = None


def normalize_tier(tier: str | None) -> str:
    return tier if tier in ("starter", "pro") else "free"


def current_period(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now.year:04d}-{now.month:02d}"


class Entitlements:
    def __init__(self, db: Any):
        self._db = db

    async def tier(self, user_id: str) -> str:
        return normalize_tier(await self._db.get_user_tier(user_id))

    async def language_allowed(self, user_id: str, language: str) -> tuple[bool, str]:
        if language == "en":
            return True, "free"
        tier = await self.tier(user_id)
        return tier in MULTI_LANGUAGE_TIERS, tier

    async def check_and_increment(self, user_id: str, field: str) -> UsageCheck:
        tier = await self.tier(user_id)
        limit = TIER_LIMITS[tier].get(field)
        result = await self._db.increment_usage_if_allowed(user_id, current_period(), field, limit)
        return UsageCheck(
            allowed=bool(result.get("allowed")),
            tier=tier,
            limit=limit,
            current_count=result.get("current_count"),
        )
