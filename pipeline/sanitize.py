"""URL normalization (dedup key), validation and extraction from search results."""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from core import Platform
from sources.registry import get_platform_spec


_TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "igshid",
    "igsh",
    "si",
    "ref",
    "ref_src",
    "ref_url",
    "mibextid",
    "feature",
    "_rdr",
    "__cft__",
    "__tn__",
}

_PLATFORM_DROP_PARAMS = {
    Platform.LINKEDIN: {"trk", "trackingid"},
    Platform.TWITTER: {"s", "t"},
    Platform.FACEBOOK: {"rdid", "share_url"},
}

_HOST_PREFIXES = ("www.", "m.", "mobile.", "old.")

# stage 2 accepts a URL only when it points at a post, not a profile/search page
_VALID_PATTERNS = {
    Platform.REDDIT: re.compile(r"reddit\.com/(r|user|u)/", re.IGNORECASE),
    Platform.LINKEDIN: re.compile(r"linkedin\.com/(posts/[^/]+-activity-\d+|pulse/|feed/update/)", re.IGNORECASE),
    Platform.TWITTER: re.compile(r"(twitter|x)\.com/\w+/status/\d+", re.IGNORECASE),
}

_POST_PATTERNS = {
    Platform.INSTAGRAM: re.compile(r"instagram\.com/(p|reel|reels|tv)/[\w-]+", re.IGNORECASE),
    Platform.TIKTOK: re.compile(r"tiktok\.com/@[\w.-]+/video/\d+", re.IGNORECASE),
    Platform.TWITTER: re.compile(r"(twitter|x)\.com/\w+/status/\d+", re.IGNORECASE),
    Platform.REDDIT: re.compile(r"reddit\.com/r/[^/]+/comments/[^/]+", re.IGNORECASE),
    Platform.FACEBOOK: re.compile(r"(facebook\.com/.*(posts|videos|share/p|permalink)|facebook\.com/watch|fb\.watch/)", re.IGNORECASE),
    Platform.YOUTUBE: re.compile(r"(youtube\.com/(watch\?v=|shorts/)|youtu\.be/)", re.IGNORECASE),
    Platform.LINKEDIN: re.compile(r"linkedin\.com/(posts/|pulse/|feed/update/)|-activity-\d+", re.IGNORECASE),
}


def _as_platform(platform: Any) -> Optional[Platform]:
    if platform is None:
        return None
    try:
        return Platform(platform)
    except ValueError:
        return None


def normalize_platform_url(url: str, platform: Any = None) -> str:
    """
    Canonical dedup key for a post URL.

    https scheme, lowercase host without ``www.``/mobile prefixes, default
    ports, fragments and tracking parameters removed, remaining parameters
    sorted, trailing slash stripped. Reddit drops the whole query (``?tl=``
    language marker and share params). Idempotent.
    Returns "" for values that are not http(s) URLs.
    """
    value = str(url or "").strip()
    if not value:
        return ""
    if value.startswith("//"):
        value = f"https:{value}"
    elif not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", value):
        value = f"https://{value}"

    try:
        parsed = urlparse(value)
    except ValueError:
        return ""
    if str(parsed.scheme or "").lower() not in {"http", "https"}:
        return ""

    host = str(parsed.hostname or "").strip().lower().rstrip(".")
    if not host:
        return ""
    for prefix in _HOST_PREFIXES:
        if host.startswith(prefix):
            host = host[len(prefix):]
            break
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port and port not in {80, 443}:
        host = f"{host}:{port}"

    path = re.sub(r"/{2,}", "/", str(parsed.path or ""))
    path = path.rstrip("/")

    resolved = _as_platform(platform) or _platform_from_host(host)
    query = ""
    if resolved != Platform.REDDIT:
        drop = _TRACKING_PARAMS | _PLATFORM_DROP_PARAMS.get(resolved, set())
        pairs = []
        for key, val in parse_qsl(str(parsed.query or ""), keep_blank_values=False):
            key_clean = str(key or "").strip()
            lowered = key_clean.lower()
            if lowered.startswith("utm_") or lowered in drop:
                continue
            pairs.append((key_clean, str(val or "").strip()))
        query = urlencode(sorted(pairs), doseq=False)

    return urlunparse(("https", host, path, "", query, ""))


def _platform_from_host(host: str) -> Optional[Platform]:
    bare = host.split(":", 1)[0]
    for platform in Platform:
        for domain in get_platform_spec(platform).domains:
            if bare == domain or bare.endswith(f".{domain}"):
                return platform
    return None


def is_valid_platform_url(url: str, platform: Any) -> bool:
    value = str(url or "").strip()
    if not value.startswith("https://"):
        return False
    pattern = _VALID_PATTERNS.get(_as_platform(platform))
    return bool(pattern.search(value)) if pattern else True


def sanitize_urls(urls: Iterable[str], platform: Any) -> List[str]:
    """Normalize, validate and de-duplicate (order kept) candidate URLs for stage 2."""
    seen = set()
    cleaned: List[str] = []
    for url in urls or []:
        normalized = normalize_platform_url(url, platform)
        if not normalized or normalized in seen or not is_valid_platform_url(normalized, platform):
            continue
        seen.add(normalized)
        cleaned.append(normalized)
    return cleaned


def _result_link(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        for key in ("link", "url", "href", "display_link"):
            value = result.get(key)
            if value:
                return str(value)
    return ""


def is_platform_post_url(url: str, platform: Any) -> bool:
    resolved = _as_platform(platform)
    if resolved is None:
        return False
    normalized = normalize_platform_url(url, resolved)
    if not normalized:
        return False
    host = urlparse(normalized).hostname or ""
    if not any(host == domain or host.endswith(f".{domain}") for domain in get_platform_spec(resolved).domains):
        return False
    return bool(_POST_PATTERNS[resolved].search(normalized))


def extract_platform_urls(results: Iterable[Any], platform: Any) -> List[str]:
    """Pick post URLs belonging to `platform` out of search results, normalized and de-duplicated."""
    candidates = [_result_link(item) for item in results or []]
    return sanitize_urls([url for url in candidates if url and is_platform_post_url(url, platform)], platform)
