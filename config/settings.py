"""
Settings Configuration
使用 Pydantic 进行配置验证和管理
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class PipelineSettings(BaseSettings):
    """Run pipeline tuning knobs."""
    classify_batch_size: int = Field(default=20, description="Posts classified concurrently per batch")
    poll_interval_sec: float = Field(default=10.0, description="Provider job poll interval (seconds)")
    job_timeout_sec: float = Field(default=1800.0, description="Provider job completion timeout (seconds)")
    download_max_attempts: int = Field(default=3, description="Snapshot download attempts")
    download_backoff_sec: float = Field(default=30.0, description="Fixed wait between download attempts")
    stuck_run_cutoff_minutes: int = Field(default=60, description="Running runs idle longer than this are swept")
    worker_count: int = Field(default=2, description="Concurrent run workers")
    default_post_limit: int = Field(default=100, description="Default per-platform fetch limit")

    class Config:
        env_prefix = "PIPELINE_"


class ProviderSettings(BaseSettings):
    """BrightData dataset API 配置"""
    api_key: Optional[str] = Field(default=None, description="BrightData API token")
    base_url: str = Field(default="https://api.brightdata.com/datasets/v3", description="Dataset API base URL")
    request_timeout: float = Field(default=30.0, description="HTTP timeout (seconds)")
    download_timeout: float = Field(default=60.0, description="Snapshot download timeout (seconds)")

    instagram_dataset_id: str = Field(default="gd_lk5ns7kz21pck8jpis")
    tiktok_dataset_id: str = Field(default="gd_lu702nij2f790tmv9h")
    twitter_dataset_id: str = Field(default="gd_lwxkxvnf1cynvib9co")
    reddit_dataset_id: str = Field(default="gd_lvz8ah06191smkebj4")
    facebook_dataset_id: str = Field(default="gd_lyclm1571iy3mv57zw")
    youtube_dataset_id: str = Field(default="gd_lk56epmy2i5g7lzu0k")
    linkedin_dataset_id: str = Field(default="gd_lyy3tktm25m4avu764")

    class Config:
        env_prefix = "BRIGHTDATA_"

    def dataset_id(self, platform: str) -> str:
        return str(getattr(self, f"{platform}_dataset_id", "") or "")


class SerpSettings(BaseSettings):
    """SERP (search-style discovery) 配置"""
    api_key: Optional[str] = Field(default=None, description="SERP API token (falls back to BrightData token)")
    api_url: str = Field(default="https://api.brightdata.com/request", description="SERP request endpoint")
    zone: str = Field(default="serp_api1", description="SERP zone name")
    google_domain: str = Field(default="google.com", description="Default Google domain")
    max_results: int = Field(default=100, description="Maximum results per platform query")
    results_per_page: int = Field(default=10, description="Results per SERP page")
    request_timeout: float = Field(default=90.0, description="HTTP timeout (seconds)")
    retry_attempts: int = Field(default=3, description="Page fetch attempts")
    retry_delay: float = Field(default=1.0, description="Delay between pages (seconds)")

    class Config:
        env_prefix = "SERP_"


class ClassifierSettings(BaseSettings):
    """LLM classifier 配置 (Ollama compatible)"""
    endpoint: str = Field(default="http://localhost:11434", description="Model server endpoint")
    model_name: str = Field(default="llama3.2:1b", description="Generation model")
    embedding_model: str = Field(default="nomic-embed-text", description="Embedding model")
    request_timeout: float = Field(default=60.0, description="HTTP timeout (seconds)")
    temperature: float = Field(default=0.3, description="生成温度")
    max_tokens: int = Field(default=500, description="最大生成token数")

    class Config:
        env_prefix = "LLM_"


class StorageSettings(BaseSettings):
    """存储配置"""
    provider: str = Field(default="memory", description="Document store: memory | disk")
    data_dir: str = Field(default="./data/documents", description="Disk store root directory")

    class Config:
        env_prefix = "STORAGE_"


class GeneralSettings(BaseSettings):
    """通用设置"""
    log_level: str = Field(default="INFO", description="日志级别")
    log_file: Optional[str] = Field(default=None, description="日志文件名 (可选)")


class Settings(BaseSettings):
    """主配置类 - 聚合所有子配置"""

    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    serp: SerpSettings = Field(default_factory=SerpSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    general: GeneralSettings = Field(default_factory=GeneralSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """从指定的 .env 文件加载配置"""
        if env_path is None:
            # 默认查找 config/.env
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            pipeline=PipelineSettings(),
            provider=ProviderSettings(),
            serp=SerpSettings(),
            classifier=ClassifierSettings(),
            storage=StorageSettings(),
            general=GeneralSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """获取全局配置单例"""
    return Settings.load_from_env_file()


# 便捷访问
def get_pipeline_settings() -> PipelineSettings:
    return get_settings().pipeline


def get_provider_settings() -> ProviderSettings:
    return get_settings().provider


def get_serp_settings() -> SerpSettings:
    return get_settings().serp


def get_classifier_settings() -> ClassifierSettings:
    return get_settings().classifier


def get_storage_settings() -> StorageSettings:
    return get_settings().storage
