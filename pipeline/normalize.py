"""Per-platform raw record normalization.

Each provider dataset has its own record shape. The shapes are treated as a
tagged variant keyed by platform: one normalizer per variant, all producing a
`NormalizedRecord`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core import Engagement, Platform
from .sanitize import normalize_platform_url


_HASHTAG_RE = re.compile(r"#(\w{2,64})", re.UNICODE)


@dataclass
class NormalizedRecord:
    platform: Platform
    url: str
    post_id: Optional[str]
    content_type: Optional[str]
    text: str
    hashtags: List[str]
    author: Optional[str]
    date_posted: Optional[datetime]
    engagement: Engagement
    raw: Dict[str, Any] = field(default_factory=dict)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _text(*parts: Any) -> str:
    return " ".join(str(part).strip() for part in parts if part not in (None, "") and str(part).strip())


def _parse_date(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e12:
            seconds /= 1000.0
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if text.isdigit():
            return _parse_date(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _hashtags(raw_value: Any, text: str) -> List[str]:
    tags: List[str] = []
    for item in list(raw_value or []) if isinstance(raw_value, list) else []:
        if isinstance(item, dict):
            item = item.get("hashtag") or item.get("name") or item.get("tag")
        tag = str(item or "").strip().lstrip("#").lower()
        if tag and tag not in tags:
            tags.append(tag)
    if not tags:
        for match in _HASHTAG_RE.findall(text or ""):
            tag = match.lower()
            if tag not in tags:
                tags.append(tag)
    return tags


def _record(
    platform: Platform,
    raw: Dict[str, Any],
    *,
    post_id: Any,
    content_type: Optional[str],
    text: str,
    author: Any,
    date_posted: Any,
    likes: Any,
    comments: Any,
    shares: Any = 0,
    views: Any = 0,
) -> NormalizedRecord:
    url = normalize_platform_url(_first(raw, "url", "post_url", "input_url") or "", platform)
    if not url:
        raise ValueError(f"{platform.value} record has no usable url")
    return NormalizedRecord(
        platform=platform,
        url=url,
        post_id=str(post_id) if post_id not in (None, "") else None,
        content_type=content_type,
        text=text,
        hashtags=_hashtags(raw.get("hashtags"), text),
        author=str(author) if author not in (None, "") else None,
        date_posted=_parse_date(date_posted),
        engagement=Engagement(likes=likes, comments=comments, shares=shares, views=views),
        raw=dict(raw),
    )


def normalize_instagram(raw: Dict[str, Any]) -> NormalizedRecord:
    url = str(raw.get("url") or "")
    return _record(
        Platform.INSTAGRAM,
        raw,
        post_id=_first(raw, "post_id", "shortcode", "id"),
        content_type="reel" if "/reel" in url else "post",
        text=_text(raw.get("description")),
        author=raw.get("user_posted"),
        date_posted=raw.get("date_posted"),
        likes=raw.get("likes"),
        comments=raw.get("num_comments"),
        views=_first(raw, "video_play_count", "views"),
    )


def normalize_tiktok(raw: Dict[str, Any]) -> NormalizedRecord:
    return _record(
        Platform.TIKTOK,
        raw,
        post_id=_first(raw, "post_id", "id"),
        content_type="video",
        text=_text(raw.get("description")),
        author=_first(raw, "profile_username", "account_id"),
        date_posted=_first(raw, "create_time", "date_posted"),
        likes=raw.get("digg_count"),
        comments=raw.get("comment_count"),
        shares=raw.get("share_count"),
        views=raw.get("play_count"),
    )


def normalize_twitter(raw: Dict[str, Any]) -> NormalizedRecord:
    return _record(
        Platform.TWITTER,
        raw,
        post_id=_first(raw, "id", "post_id"),
        content_type="tweet",
        text=_text(raw.get("description")),
        author=_first(raw, "user_posted", "name"),
        date_posted=raw.get("date_posted"),
        likes=raw.get("likes"),
        comments=raw.get("replies"),
        shares=raw.get("reposts"),
        views=raw.get("views"),
    )


def normalize_reddit(raw: Dict[str, Any]) -> NormalizedRecord:
    return _record(
        Platform.REDDIT,
        raw,
        post_id=_first(raw, "post_id", "id"),
        content_type="post",
        text=_text(raw.get("title"), raw.get("description")),
        author=raw.get("user_posted"),
        date_posted=raw.get("date_posted"),
        likes=_first(raw, "num_upvotes", "upvotes"),
        comments=raw.get("num_comments"),
    )


def normalize_facebook(raw: Dict[str, Any]) -> NormalizedRecord:
    return _record(
        Platform.FACEBOOK,
        raw,
        post_id=_first(raw, "post_id", "shortcode"),
        content_type=raw.get("post_type") or "post",
        text=_text(raw.get("content")),
        author=_first(raw, "user_username_raw", "user_handle", "profile_handle"),
        date_posted=raw.get("date_posted"),
        likes=raw.get("likes"),
        comments=raw.get("num_comments"),
        shares=raw.get("num_shares"),
        views=_first(raw, "video_view_count", "play_count"),
    )


def normalize_youtube(raw: Dict[str, Any]) -> NormalizedRecord:
    description = str(raw.get("description") or "")[:500]
    return _record(
        Platform.YOUTUBE,
        raw,
        post_id=_first(raw, "video_id", "shortcode"),
        content_type="video",
        text=_text(raw.get("title"), description),
        author=_first(raw, "youtuber", "handle_name"),
        date_posted=raw.get("date_posted"),
        likes=raw.get("likes"),
        comments=raw.get("num_comments"),
        views=raw.get("views"),
    )


def normalize_linkedin(raw: Dict[str, Any]) -> NormalizedRecord:
    return _record(
        Platform.LINKEDIN,
        raw,
        post_id=raw.get("id"),
        content_type=raw.get("post_type") or "post",
        text=_text(_first(raw, "post_text", "headline", "title")),
        author=raw.get("user_id"),
        date_posted=raw.get("date_posted"),
        likes=raw.get("num_likes"),
        comments=raw.get("num_comments"),
    )


NORMALIZERS: Dict[Platform, Callable[[Dict[str, Any]], NormalizedRecord]] = {
    Platform.INSTAGRAM: normalize_instagram,
    Platform.TIKTOK: normalize_tiktok,
    Platform.TWITTER: normalize_twitter,
    Platform.REDDIT: normalize_reddit,
    Platform.FACEBOOK: normalize_facebook,
    Platform.YOUTUBE: normalize_youtube,
    Platform.LINKEDIN: normalize_linkedin,
}


def normalize_record(platform: Any, raw: Dict[str, Any]) -> NormalizedRecord:
    """Dispatch on platform. Raises ValueError for records without a usable URL or provider error rows."""
    if not isinstance(raw, dict):
        raise ValueError("raw record must be an object")
    if raw.get("error") and not raw.get("url"):
        raise ValueError(f"provider error row: {raw.get('error')}")
    return NORMALIZERS[Platform(platform)](raw)
