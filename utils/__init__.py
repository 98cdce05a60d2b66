"""
Utils Module
通用工具函数
"""
from .logger import setup_logger, get_logger
from .exceptions import (
    ListeningEngineError,
    ConfigurationError,
    ProviderError,
    JobFailedError,
    JobTimeoutError,
    ClassifierError,
    StorageError,
    DocumentExistsError,
    DocumentNotFoundError,
    PipelineError,
    CampaignNotFoundError,
    RunNotFoundError,
    InvalidCampaignError,
    CampaignPausedError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "ListeningEngineError",
    "ConfigurationError",
    "ProviderError",
    "JobFailedError",
    "JobTimeoutError",
    "ClassifierError",
    "StorageError",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "PipelineError",
    "CampaignNotFoundError",
    "RunNotFoundError",
    "InvalidCampaignError",
    "CampaignPausedError",
]
