"""Render stored analysis preferences as a prompt instruction block."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MODE_INSTRUCTIONS: dict[str, dict[str, str]] = {
    "learn": {
        "label": "LEARN",
        "directive": (
            "The user wants to understand this content deeply. "
            "Frame takeaways as concepts to study. Define technical terms when they appear. "
            'Action items should guide further learning (e.g., "research X," "study Y"), not immediate implementation.'
        ),
        "scoring": "Weight educational value and depth of explanation more heavily than practical actionability.",
    },
    "apply": {
        "label": "APPLY",
        "directive": (
            "The user wants practical, actionable output. "
            "Focus on what can be implemented this week. Assess ROI and feasibility. "
            'Action items should be concrete steps (e.g., "implement X," "try Y approach").'
        ),
        "scoring": "Weight actionability and practical value most heavily.",
    },
    "evaluate": {
        "label": "EVALUATE",
        "directive": (
            "The user wants to assess this content critically. "
            "Scrutinize evidence, methodology, and sourcing. Highlight gaps, counterarguments, and unstated assumptions. "
            'Action items should guide verification (e.g., "verify X," "compare with Y").'
        ),
        "scoring": "Weight credibility, evidence quality, and intellectual rigor most heavily.",
    },
    "discover": {
        "label": "DISCOVER",
        "directive": (
            "The user wants a concise, accessible overview. "
            "Focus on the most interesting and surprising points. Entertainment value and novelty matter. "
            "Keep action items minimal; the user is browsing, not building."
        ),
        "scoring": "Weight how genuinely interesting and novel the content is.",
    },
    "create": {
        "label": "CREATE",
        "directive": (
            "The user is a content creator studying this for craft insights. "
            "Analyze structure, narrative techniques, and audience engagement strategies. "
            "Highlight what makes this content effective or ineffective. "
            'Action items should be creative techniques to adopt (e.g., "use X hook technique," "structure like Y").'
        ),
        "scoring": "Weight craft quality, production value, and transferable creative techniques.",
    },
}

EXPERTISE_INSTRUCTIONS: dict[str, dict[str, str]] = {
    "beginner": {
        "label": "BEGINNER",
        "directive": (
            "Provide extra context for domain-specific concepts. Define technical terms. "
            "Use accessible language. Give longer explanations where clarity requires it."
        ),
    },
    "intermediate": {
        "label": "INTERMEDIATE",
        "directive": "Standard depth. Only explain niche or uncommon terms. Assume general familiarity with common concepts.",
    },
    "expert": {
        "label": "EXPERT",
        "directive": (
            "Skip foundational explanations. Focus on nuances, edge cases, and advanced critique. "
            "Be concise and dense; the user has deep domain knowledge."
        ),
    },
}

FOCUS_LABELS: dict[str, dict[str, str]] = {
    "accuracy": {"label": "ACCURACY", "directive": "Scrutinize claims and sources closely. Flag unsourced or dubious assertions."},
    "takeaways": {"label": "TAKEAWAYS", "directive": 'Emphasize memorable insights. Focus key takeaways on "so what?" value.'},
    "efficiency": {"label": "EFFICIENCY", "directive": "Keep all sections concise. Prioritize the verdict and essentials."},
    "depth": {"label": "DEPTH", "directive": "Be thorough in your analysis. Longer, more detailed output is fine."},
    "bias": {"label": "BIAS", "directive": "Highlight author perspective, unstated assumptions, and conflicts of interest."},
    "novelty": {"label": "NOVELTY", "directive": "Flag derivative content. Highlight genuinely original ideas and fresh perspectives."},
}

DEFAULT_FOCUS = frozenset({"takeaways", "accuracy"})


@dataclass(slots=True)
class AnalysisPreferences:
    analysis_mode: str = "apply"
    expertise_level: str = "intermediate"
    focus_areas: list[str] = field(default_factory=lambda: sorted(DEFAULT_FOCUS))
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> "AnalysisPreferences | None":
        if not row:
            return None
        return cls(
            analysis_mode=row.get("analysis_mode") or "apply",
            expertise_level=row.get("expertise_level") or "intermediate",
            focus_areas=list(row.get("focus_areas") or []),
            is_active=bool(row.get("is_active")),
        )

    @property
    def is_default(self) -> bool:
        return (
            self.analysis_mode == "apply"
            and self.expertise_level == "intermediate"
            and len(self.focus_areas) == 2
            and set(self.focus_areas) == DEFAULT_FOCUS
        )


def build_preference_block(prefs: AnalysisPreferences | None) -> str:
    """Empty for inactive or all-default preferences."""
    if prefs is None or not prefs.is_active or prefs.is_default:
        return ""

    mode = MODE_INSTRUCTIONS.get(prefs.analysis_mode, MODE_INSTRUCTIONS["apply"])
    expertise = EXPERTISE_INSTRUCTIONS.get(prefs.expertise_level, EXPERTISE_INSTRUCTIONS["intermediate"])

    lines = [
        "USER PREFERENCES (adjust your evaluation accordingly):",
        f"- Analysis mode: {mode['label']}: {mode['directive']}",
        f"- Expertise: {expertise['label']}: {expertise['directive']}",
    ]
    focus = [FOCUS_LABELS[f] for f in prefs.focus_areas if f in FOCUS_LABELS]
    if focus:
        lines.append("- Priorities: " + " and ".join(f"{f['label']} ({f['directive']})" for f in focus))
    lines.append("")
    lines.append(f"When scoring signal_noise_score, {mode['scoring']}")
    return "\n" + "\n".join(lines) + "\n"
