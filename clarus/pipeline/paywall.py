from __future__ import annotations

from clarus.tools.web_utils import extract_domain

PAYWALLED_DOMAINS = frozenset(
    {
        "nytimes.com",
        "wsj.com",
        "washingtonpost.com",
        "ft.com",
        "economist.com",
        "bloomberg.com",
        "barrons.com",
        "telegraph.co.uk",
        "thetimes.co.uk",
        "latimes.com",
        "bostonglobe.com",
        "theatlantic.com",
        "newyorker.com",
        "wired.com",
        "hbr.org",
        "businessinsider.com",
        "seekingalpha.com",
        "theathletic.com",
        "theinformation.com",
        "stratechery.com",
    }
)

MIN_ARTICLE_LENGTH = 500
FULL_ARTICLE_LENGTH = 2000

PAYWALL_PREVIEW_WARNING = (
    "This content is from a paywalled source. The analysis is based on the publicly available "
    "preview, which may not include the full article."
)
SHORT_CONTENT_WARNING = (
    "The scraped content is shorter than expected. This may be due to a paywall, login wall, or "
    "content that requires JavaScript to render. The analysis may be incomplete."
)
SUBSCRIPTION_WARNING = (
    "This content is from a source that sometimes requires a subscription. If the analysis seems "
    "incomplete, the full article may be behind a paywall."
)

_NEVER_PAYWALLED = {"youtube", "pdf", "document"}


def detect_paywall_truncation(url: str, text: str | None, content_type: str) -> str | None:
    """Return a user-facing warning when scraped text looks cut short by a paywall."""
    if not text or content_type in _NEVER_PAYWALLED:
        return None

    known_paywall = extract_domain(url) in PAYWALLED_DOMAINS
    if known_paywall and len(text) < FULL_ARTICLE_LENGTH:
        return PAYWALL_PREVIEW_WARNING
    if len(text) < MIN_ARTICLE_LENGTH and content_type == "article":
        return SHORT_CONTENT_WARNING
    if known_paywall:
        return SUBSCRIPTION_WARNING
    return None
