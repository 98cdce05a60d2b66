from __future__ import annotations

import pytest

from pipeline.sanitize import extract_platform_urls, is_platform_post_url, normalize_platform_url, sanitize_urls


VARIANTS = [
    ("http://www.Instagram.com/p/ABC123/?utm_source=ig_web&igshid=xyz#comments", "instagram", "https://instagram.com/p/ABC123"),
    ("https://old.reddit.com/r/running/comments/abc123/best_shoes/?tl=es", "reddit", "https://reddit.com/r/running/comments/abc123/best_shoes"),
    ("https://m.youtube.com/watch?v=dQw4w9WgXcQ&feature=share&si=abc", "youtube", "https://youtube.com/watch?v=dQw4w9WgXcQ"),
    ("https://x.com/brand/status/1234567890?s=20&t=abcdef", "twitter", "https://x.com/brand/status/1234567890"),
    (
        "https://www.linkedin.com/posts/acme_launch-activity-7000000000000000000-abcd?trk=public_post&utm_medium=x",
        "linkedin",
        "https://linkedin.com/posts/acme_launch-activity-7000000000000000000-abcd",
    ),
    ("https://www.tiktok.com/@creator/video/7312345678901234567?is_from_webapp=1&_r=1", "tiktok", "https://tiktok.com/@creator/video/7312345678901234567?_r=1&is_from_webapp=1"),
    ("https://m.facebook.com/brand/posts/10001//?fbclid=zzz&rdid=1", "facebook", "https://facebook.com/brand/posts/10001"),
]


@pytest.mark.parametrize("raw,platform,expected", VARIANTS)
def test_normalize_platform_url_canonical_form(raw: str, platform: str, expected: str) -> None:
    assert normalize_platform_url(raw, platform) == expected


@pytest.mark.parametrize("raw,platform,expected", VARIANTS)
def test_normalize_platform_url_is_idempotent(raw: str, platform: str, expected: str) -> None:
    once = normalize_platform_url(raw, platform)
    assert normalize_platform_url(once, platform) == once
    assert normalize_platform_url(once) == once


def test_equivalent_urls_share_one_dedup_key() -> None:
    urls = [
        "https://www.instagram.com/p/XYZ/",
        "http://instagram.com/p/XYZ",
        "https://instagram.com/p/XYZ/?utm_campaign=spring&igsh=1",
        "instagram.com/p/XYZ#top",
    ]
    keys = {normalize_platform_url(url, "instagram") for url in urls}
    assert keys == {"https://instagram.com/p/XYZ"}


def test_normalize_platform_url_sorts_params_and_keeps_custom_ports() -> None:
    assert normalize_platform_url("https://example.com/a/?b=2&a=1") == "https://example.com/a?a=1&b=2"
    assert normalize_platform_url("https://example.com:8080/x/") == "https://example.com:8080/x"
    assert normalize_platform_url("https://example.com:443/x") == "https://example.com/x"


def test_normalize_platform_url_detects_reddit_from_host() -> None:
    assert normalize_platform_url("https://www.reddit.com/r/a/comments/b/c/?share_id=1&tl=fr") == "https://reddit.com/r/a/comments/b/c"


def test_normalize_platform_url_rejects_non_http_values() -> None:
    assert normalize_platform_url("") == ""
    assert normalize_platform_url(None) == ""  # type: ignore[arg-type]
    assert normalize_platform_url("ftp://files.example.com/a") == ""


def test_sanitize_urls_dedupes_and_validates_per_platform() -> None:
    cleaned = sanitize_urls(
        [
            "https://www.reddit.com/r/running/comments/a1/shoes/",
            "https://reddit.com/r/running/comments/a1/shoes?tl=de",
            "https://www.reddit.com/search?q=shoes",
            "",
        ],
        "reddit",
    )
    assert cleaned == ["https://reddit.com/r/running/comments/a1/shoes"]

    tweets = sanitize_urls(["https://twitter.com/brand", "https://twitter.com/brand/status/42?s=09"], "twitter")
    assert tweets == ["https://twitter.com/brand/status/42"]


def test_extract_platform_urls_keeps_only_post_links_of_the_platform() -> None:
    results = [
        {"link": "https://www.instagram.com/p/AAA/?utm_source=google"},
        {"url": "https://www.instagram.com/shopper/"},
        {"link": "https://www.tiktok.com/@creator/video/1"},
        {"link": "https://www.instagram.com/reel/BBB/"},
        {"link": "https://instagram.com/p/AAA"},
        "https://www.instagram.com/tv/CCC",
        {"title": "no link here"},
    ]
    assert extract_platform_urls(results, "instagram") == [
        "https://instagram.com/p/AAA",
        "https://instagram.com/reel/BBB",
        "https://instagram.com/tv/CCC",
    ]


def test_is_platform_post_url_checks_domain() -> None:
    assert is_platform_post_url("https://youtu.be/abc", "youtube") is True
    assert is_platform_post_url("https://notyoutube.org/watch?v=abc", "youtube") is False
    assert is_platform_post_url("https://www.youtube.com/@channel", "youtube") is False
