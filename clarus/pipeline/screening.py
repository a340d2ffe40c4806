"""Content moderation: URL and keyword pre-screens plus AI refusal detection.

Every flag is persisted to ``flagged_content`` for review. Content is blocked
before analysis when any flag is ``critical`` or ``high``.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any

from clarus.services.logger import logger
from clarus.tools.web_utils import hostname

SCAN_LIMIT = 50_000
MIN_SCAN_LENGTH = 50
PREVIEW_LENGTH = 500
BLOCKING_SEVERITIES = {"critical", "high"}


@dataclass(slots=True)
class ContentFlag:
    source: str
    severity: str
    categories: list[str]
    reason: str


@dataclass(slots=True)
class ScreeningResult:
    blocked: bool
    flags: list[ContentFlag] = field(default_factory=list)


_I = re.IGNORECASE

BLOCKED_DOMAIN_PATTERNS: list[tuple[re.Pattern[str], list[str], str]] = [
    (re.compile(r"\.onion\.", _I), ["csam", "trafficking"], "critical"),
    (re.compile(r"(?:darknet|deepweb|hidden.wiki)", _I), ["csam", "trafficking"], "critical"),
]

_MINOR = r"\b(?:child|minor|underage|pre-?teen|infant)\b"
_EXPLOIT = r"\b(?:exploit|abuse|nude|naked|porn|sexual|molest|groom)\b"
_AGENTS = r"\b(?:sarin|vx\s+gas|nerve\s+agent|ricin|anthrax|botulinum)\b"

KEYWORD_PATTERNS: list[tuple[re.Pattern[str], list[str], str, str]] = [
    (re.compile(_MINOR + r"[\s\S]{0,200}" + _EXPLOIT, _I), ["csam"], "critical",
     "Content contains child exploitation indicators"),
    (re.compile(_EXPLOIT + r"[\s\S]{0,200}" + _MINOR, _I), ["csam"], "critical",
     "Content contains child exploitation indicators"),
    (re.compile(r"\b(?:cp\s+(?:link|download|share|collection|trade)|pizza\s+cheese\s+(?:link|download|share))\b", _I),
     ["csam"], "critical", "Content contains known CSAM distribution terminology"),
    (re.compile(
        r"\b(?:synthesiz|manufactur|produc|creat|mak)\w*\b[\s\S]{0,150}"
        r"\b(?:sarin|vx\s+gas|nerve\s+agent|ricin|anthrax|botulinum|mustard\s+gas|chlorine\s+gas)\b", _I),
     ["weapons"], "high", "Content contains chemical/biological weapon manufacturing instructions"),
    (re.compile(_AGENTS + r"[\s\S]{0,150}\b(?:synthesiz|manufactur|produc|creat|mak|prepar)\w*\b", _I),
     ["weapons"], "high", "Content contains chemical/biological weapon manufacturing instructions"),
    (re.compile(
        r"\b(?:improv\w*\s+explosive|pipe\s+bomb|pressure\s+cooker\s+bomb|detonat\w*\s+mechanism)\b[\s\S]{0,200}"
        r"\b(?:build|construct|assembl|wir|connect|timer)\b", _I),
     ["weapons", "terrorism"], "high", "Content contains explosive device construction instructions"),
    (re.compile(
        r"\b(?:jihad|martyrdom\s+operation|caliphate)\b[\s\S]{0,200}"
        r"\b(?:recruit|join|travel|train|attack\s+plan|target)\b", _I),
     ["terrorism"], "high", "Content contains terrorism recruitment or operational planning"),
    (re.compile(
        r"\b(?:traffick|smuggl)\w*\b[\s\S]{0,200}\b(?:person|human|women|girl|boy|child|minor)\b[\s\S]{0,200}"
        r"\b(?:price|cost|buy|sell|deliver|transport|route)\b", _I),
     ["trafficking"], "high", "Content contains human trafficking facilitation indicators"),
]


def screen_url(url: str) -> ContentFlag | None:
    host = hostname(url)
    if not host:
        return None
    for pattern, categories, severity in BLOCKED_DOMAIN_PATTERNS:
        if pattern.search(host):
            return ContentFlag("url_screening", severity, list(categories), f"URL matches blocked domain pattern: {host}")
    return None


def screen_text(text: str | None) -> list[ContentFlag]:
    """Keyword pre-screen over the first 50K characters, one flag per category set."""
    if not text or len(text) < MIN_SCAN_LENGTH:
        return []
    sample = text[:SCAN_LIMIT].lower()
    flags: list[ContentFlag] = []
    seen: set[str] = set()
    for pattern, categories, severity, reason in KEYWORD_PATTERNS:
        key = ",".join(categories)
        if key not in seen and pattern.search(sample):
            seen.add(key)
            flags.append(ContentFlag("keyword_screening", severity, list(categories), reason))
    return flags


def infer_categories(reason: str) -> list[str]:
    lower = reason.lower()
    categories: list[str] = []
    if any(word in lower for word in ("child", "csam", "minor", "exploitation")):
        categories.append("csam")
    if any(word in lower for word in ("terror", "bomb", "attack")):
        categories.append("terrorism")
    if any(word in lower for word in ("weapon", "explosive", "chemical", "biological")):
        categories.append("weapons")
    if "traffick" in lower:
        categories.append("trafficking")
    return categories or ["terrorism"]


def detect_ai_refusal(section: Any) -> ContentFlag | None:
    """Recognize ``{"refused": true}`` objects and ``CONTENT_REFUSED:`` text."""
    if not section:
        return None
    if isinstance(section, dict) and section.get("refused") is True:
        reason = str(section.get("reason") or "")
        return ContentFlag("ai_refusal", "high", infer_categories(reason), reason or "AI refused to analyze this content")
    if isinstance(section, str) and section.startswith("CONTENT_REFUSED:"):
        return ContentFlag("ai_refusal", "high", infer_categories(section), section.replace("CONTENT_REFUSED:", "", 1).strip())
    return None


def hash_content(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


async def persist_flag(
    db: Any,
    flag: ContentFlag,
    *,
    url: str,
    content_id: str | None = None,
    user_id: str | None = None,
    content_type: str | None = None,
    text: str | None = None,
) -> None:
    """Write a flag for review. Failures are logged and never raised."""
    try:
        await db.insert_flag(
            {
                "content_id": content_id,
                "user_id": user_id,
                "url": url,
                "content_type": content_type,
                "flag_source": flag.source,
                "flag_reason": flag.reason,
                "flag_categories": flag.categories,
                "severity": flag.severity,
                "user_ip": "internal",
                "content_hash": hash_content(text) if text else None,
                "scraped_text_preview": text[:PREVIEW_LENGTH] if text else None,
                "status": "pending",
            }
        )
    except Exception as exc:
        logger.error(f"MODERATION: Failed to persist flag: {exc}")
        return
    logger.info(f"MODERATION: Content flagged [{flag.severity}] {flag.source}: {flag.reason} (URL: {url})")


async def screen_content(
    db: Any,
    *,
    url: str,
    text: str | None,
    content_id: str | None = None,
    user_id: str | None = None,
    content_type: str | None = None,
) -> ScreeningResult:
    flags: list[ContentFlag] = []
    url_flag = screen_url(url)
    if url_flag:
        flags.append(url_flag)
    flags.extend(screen_text(text))

    for flag in flags:
        await persist_flag(db, flag, url=url, content_id=content_id, user_id=user_id, content_type=content_type, text=text)

    return ScreeningResult(blocked=any(f.severity in BLOCKING_SEVERITIES for f in flags), flags=flags)
