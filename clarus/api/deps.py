from __future__ import annotations

from functools import lru_cache
from typing import Any

from clarus.pipeline.controller import ContentPipeline
from clarus.services import supabase


def get_db() -> Any:
    """Database module used by the routes; tests override this dependency."""
    return supabase


@lru_cache(maxsize=1)
def get_pipeline() -> ContentPipeline:
    return ContentPipeline(db=supabase)
