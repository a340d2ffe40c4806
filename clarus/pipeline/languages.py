from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Language:
    code: str
    name: str
    native_name: str
    rtl: bool = False


SUPPORTED_LANGUAGES: tuple[Language, ...] = (
    Language("en", "English", "English"),
    Language("ar", "Arabic", "العربية", rtl=True),
    Language("es", "Spanish", "Español"),
    Language("fr", "French", "Français"),
    Language("de", "German", "Deutsch"),
    Language("pt", "Portuguese", "Português"),
    Language("ja", "Japanese", "日本語"),
    Language("ko", "Korean", "한국어"),
    Language("zh", "Chinese", "中文"),
    Language("it", "Italian", "Italiano"),
    Language("nl", "Dutch", "Nederlands"),
)

_BY_CODE = {lang.code: lang for lang in SUPPORTED_LANGUAGES}
DEFAULT_LANGUAGE_DIRECTIVE = "Write your analysis in English."


def is_valid_language(code: str) -> bool:
    return code in _BY_CODE


def get_language(code: str) -> Language:
    """Unknown codes fall back to English."""
    return _BY_CODE.get(code, SUPPORTED_LANGUAGES[0])


def language_directive(code: str) -> str:
    if code == "en":
        return DEFAULT_LANGUAGE_DIRECTIVE
    lang = get_language(code)
    return (
        f"Write your ENTIRE analysis output in {lang.name} ({lang.native_name}). "
        f"ALL headers, bullets, descriptions, and prose MUST be in {lang.name}. "
        "Do not mix languages except for proper nouns and technical terms."
    )
