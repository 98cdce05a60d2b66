"""Platform descriptors and the client registry used by the run pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core import CampaignSettings, Platform
from utils.exceptions import ConfigurationError

from .base import ClassifierClient, ContentProviderClient, UrlSearchClient


class DiscoveryMode(str, Enum):
    """How stage 1 finds content for a platform."""

    KEYWORD = "keyword"  # provider discovery returns final records
    SERP = "serp"  # search yields URLs, stage 2 fetches them
    DUAL = "dual"  # both; the URL half still needs stage 2


@dataclass(frozen=True)
class PlatformSpec:
    platform: Platform
    domains: Tuple[str, ...]
    search_templates: Tuple[str, ...]
    keyword_discovery: bool = False
    keyword_options: Dict[str, str] = field(default_factory=dict)


PLATFORM_SPECS: Dict[Platform, PlatformSpec] = {
    Platform.INSTAGRAM: PlatformSpec(
        platform=Platform.INSTAGRAM,
        domains=("instagram.com",),
        search_templates=("site:instagram.com/p/ {keywords}", "site:instagram.com/reel/ {keywords}"),
    ),
    Platform.TIKTOK: PlatformSpec(
        platform=Platform.TIKTOK,
        domains=("tiktok.com",),
        search_templates=("site:tiktok.com {keywords}",),
        keyword_discovery=True,
    ),
    Platform.TWITTER: PlatformSpec(
        platform=Platform.TWITTER,
        domains=("twitter.com", "x.com"),
        search_templates=("site:x.com {keywords}", "site:twitter.com {keywords}"),
    ),
    Platform.REDDIT: PlatformSpec(
        platform=Platform.REDDIT,
        domains=("reddit.com",),
        search_templates=("site:reddit.com/r/ {keywords}",),
        keyword_discovery=True,
        keyword_options={"date": "Past month", "sort_by": "Hot"},
    ),
    Platform.FACEBOOK: PlatformSpec(
        platform=Platform.FACEBOOK,
        domains=("facebook.com", "fb.com", "fb.watch"),
        search_templates=("site:facebook.com {keywords}",),
    ),
    Platform.YOUTUBE: PlatformSpec(
        platform=Platform.YOUTUBE,
        domains=("youtube.com", "youtu.be"),
        search_templates=("site:youtube.com {keywords}",),
        keyword_discovery=True,
    ),
    Platform.LINKEDIN: PlatformSpec(
        platform=Platform.LINKEDIN,
        domains=("linkedin.com",),
        search_templates=("site:linkedin.com {keywords}",),
    ),
}


def get_platform_spec(platform: Platform | str) -> PlatformSpec:
    return PLATFORM_SPECS[Platform(platform)]


def discovery_mode(platform: Platform | str, settings: Optional[CampaignSettings] = None) -> DiscoveryMode:
    value = Platform(platform)
    settings = settings or CampaignSettings()
    if value == Platform.REDDIT:
        return DiscoveryMode.DUAL if settings.reddit_use_dual_search else DiscoveryMode.KEYWORD
    if get_platform_spec(value).keyword_discovery:
        return DiscoveryMode.KEYWORD
    return DiscoveryMode.SERP


def build_search_queries(query: str, platform: Platform | str) -> List[str]:
    """`site:` scoped queries; keywords are joined with '+' so the engine ANDs them."""
    keywords = "+".join(str(query or "").split())
    return [template.format(keywords=keywords) for template in get_platform_spec(platform).search_templates]


class SourceRegistry:
    """Holds the per-platform provider clients plus the shared search/classifier clients."""

    def __init__(
        self,
        *,
        providers: Dict[str, ContentProviderClient],
        search: Optional[UrlSearchClient] = None,
        classifier: Optional[ClassifierClient] = None,
    ) -> None:
        self._providers = {Platform(key).value: value for key, value in providers.items()}
        self._search = search
        self._classifier = classifier

    def provider(self, platform: Platform | str) -> ContentProviderClient:
        client = self._providers.get(Platform(platform).value)
        if client is None:
            raise ConfigurationError("no content provider configured", {"platform": Platform(platform).value})
        return client

    @property
    def search(self) -> UrlSearchClient:
        if self._search is None:
            raise ConfigurationError("no URL search client configured")
        return self._search

    @property
    def classifier(self) -> ClassifierClient:
        if self._classifier is None:
            raise ConfigurationError("no classifier client configured")
        return self._classifier

    @classmethod
    def from_settings(cls) -> "SourceRegistry":
        """Build BrightData/SERP/Ollama adapters from environment configuration."""
        from .brightdata import BrightDataClient
        from .classifier import OllamaClassifierClient
        from .serp import SerpSearchClient

        providers = {platform.value: BrightDataClient(platform.value) for platform in Platform}
        return cls(providers=providers, search=SerpSearchClient(), classifier=OllamaClassifierClient())
