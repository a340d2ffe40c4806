"""Content metadata and type-specific instruction blocks for analysis prompts."""
from __future__ import annotations

import re
from typing import Any

from clarus.tools.web_utils import extract_domain

TYPE_LABELS = {
    "youtube": "YouTube Video",
    "podcast": "Podcast Episode",
    "article": "Article",
    "x_post": "X (Twitter) Post",
    "pdf": "PDF Document",
    "document": "Document",
}

TYPE_INSTRUCTIONS: dict[str, list[str]] = {
    "youtube": [
        "Reference timestamps in [MM:SS] format when citing specific claims or key moments.",
        "Compare the video title against the actual content; flag clickbait if the title is misleading.",
        "Note whether this is a conversation, interview, or monologue format.",
        "Consider creator credibility signals: channel size, engagement ratio, and track record.",
    ],
    "podcast": [
        "Attribute claims to specific speakers (Speaker A, Speaker B, etc.) when identifiable.",
        "Note agreements and disagreements between speakers.",
        "Identify host vs. guest dynamics: who is being interviewed, who is the expert.",
        "Flag claims where speakers contradict each other.",
    ],
    "article": [
        "Consider the publication source's credibility and potential editorial bias.",
        "Check whether the article cites primary sources vs. other articles or no sources at all.",
        "Flag opinion presented as fact; look for hedging language or lack thereof.",
        "Note the publication date; older articles may contain outdated information.",
        "If the content appears truncated, note the possible paywall limitation.",
    ],
    "x_post": [
        "This is short-form content; adjust your analysis depth accordingly.",
        "Claims in tweets/posts are often unsourced; verify with extra scrutiny.",
        "Note whether this appears to be a standalone post or part of a thread.",
        "Be concise in your analysis and match the brevity of the content.",
    ],
    "pdf": [
        "Expect structured content with sections, headers, and potentially references.",
        "Evaluate citation quality: peer-reviewed sources vs. no citations.",
        "Note the document's purpose: research paper, whitepaper, legal document, or manual.",
        "Prioritize the abstract/executive summary and conclusions for key takeaways.",
    ],
    "music": [
        "This is music/entertainment content. Focus on describing the content rather than fact-checking.",
        "Skip action items; they are not applicable to music content.",
        "For triage, rate enjoyment and production value rather than informational value.",
        "Do not apply signal_noise_score for informational value; set to -1 to indicate not applicable.",
    ],
    "entertainment": [
        "This is entertainment content. Focus on describing the content and its entertainment value.",
        "Fact-checking and action items are less applicable; only include if genuinely relevant.",
        "For triage, rate entertainment value and production quality rather than informational density.",
        "Adjust your analysis depth; entertainment content does not need the same rigor as news or research.",
    ],
}

_SPEAKER_RE = re.compile(r"\bSpeaker ([A-Z])\b")


def format_duration(seconds: int | float) -> str:
    """125 -> "2m", 7500 -> "2h 5m", 45 -> "45s"."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{minutes}m"


def format_count(count: int) -> str:
    """1200 -> "1.2K", 3200000 -> "3.2M"."""
    for threshold, suffix in ((1_000_000, "M"), (1_000, "K")):
        if count >= threshold:
            text = f"{count / threshold:.1f}"
            return (text[:-2] if text.endswith(".0") else text) + suffix
    return str(count)


def count_speakers(transcript: str) -> int:
    return len(set(_SPEAKER_RE.findall(transcript)))


def _excerpt(text: str, limit: int = 200) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def build_metadata_block(content: dict[str, Any]) -> str:
    """Markdown ``## Content Metadata`` block, empty when only the type is known."""
    content_type = content.get("type") or "article"
    lines = ["## Content Metadata", f"- Type: {TYPE_LABELS.get(content_type, content_type)}"]
    if content.get("title"):
        lines.append(f"- Title: {content['title']}")

    duration = content.get("duration")
    description = content.get("description")
    if content_type == "youtube":
        if content.get("author"):
            lines.append(f"- Channel: {content['author']}")
        if duration:
            hint = " (long-form)" if duration > 1800 else " (short-form)" if duration < 120 else ""
            lines.append(f"- Duration: {format_duration(duration)}{hint}")
        views = content.get("view_count")
        likes = content.get("like_count")
        if views:
            engagement = ""
            if likes and views > 0:
                ratio = likes / views * 100
                if ratio > 5:
                    engagement = " (high engagement)"
                elif ratio > 2:
                    engagement = " (good engagement)"
            like_text = f" | Likes: {format_count(likes)}" if likes else ""
            lines.append(f"- Views: {format_count(views)}{like_text}{engagement}")
        if content.get("upload_date"):
            lines.append(f"- Published: {content['upload_date']}")
        if description:
            lines.append(f"- Description: {_excerpt(description)}")
    elif content_type == "podcast":
        if duration:
            lines.append(f"- Duration: {format_duration(duration)}")
        speakers = count_speakers(content.get("full_text") or "")
        if speakers:
            shape = "monologue" if speakers == 1 else "interview/dialogue" if speakers == 2 else "panel discussion"
            lines.append(f"- Speakers: {speakers} ({shape})")
    elif content_type == "article":
        domain = extract_domain(content.get("url") or "")
        if domain:
            lines.append(f"- Source: {domain}")
        if description:
            lines.append(f"- Description: {_excerpt(description)}")
    elif content_type == "x_post":
        lines.append("- Format: Short-form social media post")
    elif content_type in ("pdf", "document"):
        domain = extract_domain(content.get("url") or "")
        if domain:
            lines.append(f"- Source: {domain}")

    if len(lines) <= 2:
        return ""
    return "\n".join(lines)


def build_type_instructions(
    content_type: str,
    *,
    duration: int | None = None,
    speaker_count: int = 0,
) -> str:
    effective = "pdf" if content_type == "document" else content_type
    base = TYPE_INSTRUCTIONS.get(effective)
    if not base:
        return ""

    lines = list(base)
    if effective == "youtube" and duration:
        if duration > 1800:
            lines.append("This is a long-form video (>30 min); focus on key segments and note pacing issues.")
        elif duration < 60:
            lines.append("This is a short-form video; the core claim is what matters. Short videos often oversimplify.")
    if effective == "podcast" and speaker_count >= 2:
        lines.append("For this interview/discussion: evaluate the quality of questions asked, not just answers given.")
    return "## Type-Specific Analysis Instructions\n" + "\n".join(f"- {line}" for line in lines)
