"""Configuration and environment loading for Cortex."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase
    supabase_url: str
    supabase_key: str

    # Gemini
    gemini_api_key: str
    gemini_model: str = "gemini-3-pro-preview"

    # Optional enrichment sources
    perplexity_api_key: str | None = None
    notion_api_key: str | None = None  # Workspace key used by deal analysis

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Upstream timeouts (seconds)
    upstream_connect_timeout: float = 10.0
    upstream_read_timeout: float = 120.0
    enrichment_timeout: float = 30.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
