"""
Application Settings Configuration
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Literal
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Video generation provider
    video_provider: Literal["replicate", "dashscope"] = Field(
        default="replicate", env="VIDEO_PROVIDER"
    )

    # Replicate (image-to-video with webhook delivery)
    replicate_api_token: str = Field(default="", env="REPLICATE_API_TOKEN")
    replicate_video_model: str = Field(
        default="wan-video/wan-2.2-i2v-fast",
        env="REPLICATE_VIDEO_MODEL",
    )
    replicate_image_model: str = Field(
        default="stability-ai/sdxl:39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b",
        env="REPLICATE_IMAGE_MODEL",
    )

    # DashScope (poll-only image-to-video)
    dashscope_api_key: str = Field(default="", env="DASHSCOPE_API_KEY")
    dashscope_video_model: str = Field(default="wan2.6-i2v", env="DASHSCOPE_VIDEO_MODEL")
    dashscope_image_model: str = Field(default="wanx2.1-t2i-turbo", env="DASHSCOPE_IMAGE_MODEL")

    # Public callback root for provider webhooks, e.g. https://reelforge.example.com
    webhook_base_url: str = Field(default="", env="WEBHOOK_BASE_URL")

    # LLM for storyline/scene text (OpenAI-compatible endpoint)
    openai_api_key: str = Field(default="", env="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", env="OPENAI_BASE_URL")
    story_model: str = Field(default="gpt-4o-mini", env="STORY_MODEL")

    # Database
    database_url: str = Field(default="sqlite:///./data/reelforge.db", env="DATABASE_URL")

    # Redis / background reconciliation
    redis_url: str = Field(default="redis://localhost:6379/0", env="REDIS_URL")
    rq_queue_name: str = Field(default="reconcile", env="RQ_QUEUE_NAME")
    background_reconcile: bool = Field(default=False, env="BACKGROUND_RECONCILE")
    reconcile_interval_s: int = Field(default=10, env="RECONCILE_INTERVAL_S")

    # Static Storage
    static_root: str = Field(default="./data/static", env="STATIC_ROOT")
    static_url_prefix: str = "/static"
    public_base_url: str = Field(default="http://localhost:8000", env="PUBLIC_BASE_URL")

    # FFmpeg
    ffmpeg_path: str = Field(default="ffmpeg", env="FFMPEG_PATH")

    # Reconciliation policy
    max_start_retries: int = Field(default=3, env="MAX_START_RETRIES")
    max_provider_retries: int = Field(default=2, env="MAX_PROVIDER_RETRIES")
    stale_job_timeout_minutes: int = Field(default=30, env="STALE_JOB_TIMEOUT_MINUTES")
    auto_compose: bool = Field(default=True, env="AUTO_COMPOSE")

    # Cost estimates (USD)
    video_cost_per_second: float = Field(default=0.01, env="VIDEO_COST_PER_SECOND")
    image_cost_per_run: float = Field(default=0.001, env="IMAGE_COST_PER_RUN")

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", env="LOG_LEVEL"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.static_root = os.path.abspath(self.static_root)

    @property
    def webhook_url(self) -> str:
        """Callback URL handed to the provider, empty when webhooks are disabled"""
        if not self.webhook_base_url:
            return ""
        return f"{self.webhook_base_url.rstrip('/')}/v1/webhooks/replicate"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
