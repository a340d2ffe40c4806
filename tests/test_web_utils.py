from __future__ import annotations

from clarus.tools.web_utils import extract_domain, hostname, normalize_url


def test_normalize_url_canonical_form():
    url = "HTTPS://WWW.Example.com/path/?utm_source=x&b=2&a=1&fbclid=abc#section"
    assert normalize_url(url) == "https://example.com/path?a=1&b=2"


def test_normalize_url_equivalent_variants_collide():
    assert normalize_url("https://example.com/a/") == normalize_url("https://www.example.com/a?utm_medium=email")


def test_normalize_url_leaves_uploads_alone():
    assert normalize_url("pdf://uploads/report.pdf") == "pdf://uploads/report.pdf"


def test_domain_helpers():
    assert hostname("https://News.Example.com/x") == "news.example.com"
    assert extract_domain("https://www.nytimes.com/2024/article") == "nytimes.com"
    assert extract_domain("not a url") == ""
