"""
Configuration Management Module
统一配置管理，实现 provider / pipeline 配置解耦
"""
from .settings import (
    Settings,
    get_settings,
    get_pipeline_settings,
    get_provider_settings,
    get_serp_settings,
    get_classifier_settings,
    get_storage_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "get_pipeline_settings",
    "get_provider_settings",
    "get_serp_settings",
    "get_classifier_settings",
    "get_storage_settings",
]
