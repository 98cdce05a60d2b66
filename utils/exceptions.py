"""
Custom Exceptions
自定义异常类
"""


class ListeningEngineError(Exception):
    """Base error for the campaign listening engine."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ListeningEngineError):
    """配置错误"""
    pass


class ProviderError(ListeningEngineError):
    """Content provider / search provider call failed."""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class JobFailedError(ProviderError):
    """Provider job reported a terminal failure status."""

    def __init__(self, message: str, job_id: str = None, **kwargs):
        super().__init__(message, job_id=job_id, **kwargs)
        self.job_id = job_id


class JobTimeoutError(ProviderError):
    """Provider job did not become ready before the deadline."""

    def __init__(self, message: str, job_id: str = None, **kwargs):
        super().__init__(message, job_id=job_id, **kwargs)
        self.job_id = job_id


class ClassifierError(ListeningEngineError):
    """LLM 调用错误"""

    def __init__(self, message: str, model: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.model = model


class StorageError(ListeningEngineError):
    """存储错误"""
    pass


class DocumentExistsError(StorageError):
    """Insert-if-absent found an existing document."""

    def __init__(self, collection: str, key: str):
        super().__init__("document already exists", {"collection": collection, "key": key})
        self.collection = collection
        self.key = key


class DocumentNotFoundError(StorageError):
    """Document lookup by key failed."""

    def __init__(self, collection: str, key: str):
        super().__init__("document not found", {"collection": collection, "key": key})
        self.collection = collection
        self.key = key


class PipelineError(ListeningEngineError):
    """Run pipeline error"""
    pass


class CampaignNotFoundError(PipelineError):
    def __init__(self, campaign_id: str):
        super().__init__("campaign not found", {"campaign_id": campaign_id})
        self.campaign_id = campaign_id


class RunNotFoundError(PipelineError):
    def __init__(self, run_id: str):
        super().__init__("run not found", {"run_id": run_id})
        self.run_id = run_id


class InvalidCampaignError(PipelineError):
    """Campaign payload failed validation."""
    pass


class CampaignPausedError(PipelineError):
    def __init__(self, campaign_id: str):
        super().__init__("campaign is paused", {"campaign_id": campaign_id})
        self.campaign_id = campaign_id
