"""Error taxonomy for the content pipeline.

Provider failures are split into ``NonRetryableError`` (bad input, 4xx) and
``TransientError`` (5xx, 429, network, timeout). Raw provider messages are
mapped to a closed set of categories before they reach the database or an
API response.
"""
from __future__ import annotations

from enum import StrEnum


class NonRetryableError(Exception):
    """A provider rejected the request; retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientError(Exception):
    """A provider failure worth retrying with backoff."""

    def __init__(self, message: str, status_code: int | None = None, *, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class ParseError(Exception):
    """AI output could not be parsed into the section's expected shape."""

    def __init__(self, message: str, section: str | None = None, raw: str = ""):
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}{message}")
        self.section = section
        self.raw = raw


class AcquisitionError(Exception):
    """Source text could not be acquired."""


class PipelineTimeout(Exception):
    """The global pipeline deadline elapsed."""


class ProcessContentError(Exception):
    """Hard pipeline error carrying an HTTP-style status code."""

    def __init__(
        self,
        message: str,
        status_code: int,
        upgrade_required: bool = False,
        tier: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.upgrade_required = upgrade_required
        self.tier = tier


class ContentPolicyViolation(ProcessContentError):
    """Moderation pre-screen blocked the content before analysis."""

    def __init__(self, message: str):
        super().__init__(message, status_code=200)


class ErrorCategory(StrEnum):
    SCRAPE_FAILED = "SCRAPE_FAILED"
    TRANSCRIPT_FAILED = "TRANSCRIPT_FAILED"
    METADATA_FAILED = "METADATA_FAILED"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    TRANSCRIPTION_EMPTY = "TRANSCRIPTION_EMPTY"
    OCR_FAILED = "OCR_FAILED"
    AI_ANALYSIS_FAILED = "AI_ANALYSIS_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    CONTENT_UNAVAILABLE = "CONTENT_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    UNKNOWN = "UNKNOWN"


_CATEGORY_KEYWORDS: list[tuple[ErrorCategory, tuple[str, ...]]] = [
    (ErrorCategory.RATE_LIMITED, ("429", "rate limit", "limit-exceeded", "too many")),
    (ErrorCategory.TIMEOUT, ("timeout", "timed out", "aborterror", "aborted")),
    (ErrorCategory.CONTENT_UNAVAILABLE, ("unavailable", "not found", "private", "restricted")),
    (ErrorCategory.SCRAPE_FAILED, ("firecrawl", "scrape", "article content")),
    (ErrorCategory.TRANSCRIPT_FAILED, ("transcript",)),
    (ErrorCategory.METADATA_FAILED, ("metadata",)),
    (ErrorCategory.TRANSCRIPTION_FAILED, ("transcription",)),
    (ErrorCategory.OCR_FAILED, ("ocr",)),
    (ErrorCategory.AI_ANALYSIS_FAILED, ("openrouter", "ai analysis", "analysis service")),
]


def classify_error(raw_message: str) -> ErrorCategory:
    """Map a raw error message to a generic category. Order matters."""
    msg = raw_message.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in msg for keyword in keywords):
            return category
    return ErrorCategory.UNKNOWN


_TYPE_LABELS = {
    "YOUTUBE": "video",
    "ARTICLE": "article",
    "PODCAST": "podcast",
    "PDF": "document",
    "DOCUMENT": "document",
    "X_POST": "post",
    "TRANSCRIPTION": "podcast",
}


def user_friendly_error(content_type: str, category: str) -> str:
    label = _TYPE_LABELS.get(content_type.upper(), "content")
    messages = {
        ErrorCategory.SCRAPE_FAILED: f"We couldn't extract the {label} content. It may be behind a login or paywall.",
        ErrorCategory.TRANSCRIPT_FAILED: f"We couldn't retrieve the transcript. The {label} may not have captions available.",
        ErrorCategory.METADATA_FAILED: f"We couldn't access this {label}'s details. It may be private or unavailable.",
        ErrorCategory.TRANSCRIPTION_FAILED: "Transcription failed. The audio may be too short or in an unsupported format.",
        ErrorCategory.TRANSCRIPTION_EMPTY: "The transcription completed but no speech was detected.",
        ErrorCategory.OCR_FAILED: "We couldn't extract text from this document.",
        ErrorCategory.AI_ANALYSIS_FAILED: "Our analysis service encountered an error. Please try regenerating.",
        ErrorCategory.RATE_LIMITED: "Our service is temporarily busy. Please try again in a few minutes.",
        ErrorCategory.TIMEOUT: "Processing took too long. Please try again.",
        ErrorCategory.CONTENT_UNAVAILABLE: f"This {label} appears to be unavailable or restricted.",
        ErrorCategory.CONTENT_POLICY_VIOLATION: "This content could not be processed due to our content policy.",
    }
    return messages.get(category, f"Something went wrong processing this {label}. Please try again.")


FAILURE_PREFIX = "PROCESSING_FAILED::"
POLICY_VIOLATION_SENTINEL = f"{FAILURE_PREFIX}{ErrorCategory.CONTENT_POLICY_VIOLATION}"


def is_failure_sentinel(text: str | None) -> bool:
    return bool(text) and text.startswith(FAILURE_PREFIX)


def failure_sentinel(content_type: str, category: str) -> str:
    return f"{FAILURE_PREFIX}{content_type.upper()}::{category}"
