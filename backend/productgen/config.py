"""Application configuration using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/productgen.db"

    # Paths
    data_dir: Path = Path("./data")

    # Bulk queue defaults
    default_batch_size: int = Field(default=5, ge=1)
    max_batch_size: int = 50
    default_delay: int = Field(default=2, ge=0)  # seconds between batch ticks
    max_delay: int = 60
    item_stagger_seconds: int = 1
    preview_limit: int = 10
    max_tokens: int = 2000
    default_temperature: float = 0.7

    # Retry of failed generations (only when a queue opts in)
    retry_max_attempts: int = 3
    retry_base_delay: int = 30  # seconds, doubled per attempt

    # A processing queue with nothing scheduled for this long is rescheduled
    stall_timeout: int = 600  # seconds

    # AI provider
    ai_provider: Literal["openai", "anthropic", "ollama"] | None = None  # None = auto-detect
    ai_model: str | None = None
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ai_timeout: float = 60.0

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100  # requests per window
    rate_limit_window: int = 60  # seconds
    ai_rate_limit_requests: int = 10  # generation endpoints are more expensive
    ai_rate_limit_window: int = 60

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
