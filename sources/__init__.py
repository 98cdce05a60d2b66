"""Source clients: content providers, URL search and classifier."""

from .base import ClassifierClient, ContentProviderClient, RawRecord, UrlSearchClient
from .registry import (
    PLATFORM_SPECS,
    DiscoveryMode,
    PlatformSpec,
    SourceRegistry,
    build_search_queries,
    discovery_mode,
    get_platform_spec,
)

__all__ = [
    "ClassifierClient",
    "ContentProviderClient",
    "RawRecord",
    "UrlSearchClient",
    "PLATFORM_SPECS",
    "DiscoveryMode",
    "PlatformSpec",
    "SourceRegistry",
    "build_search_queries",
    "discovery_mode",
    "get_platform_spec",
]
