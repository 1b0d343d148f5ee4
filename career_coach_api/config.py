"""Environment configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Mock control (opt-in feature gate for local development and tests)
    mock_llm: bool = False  # Serve canned LLM responses (don't call Gemini)

    # Gemini configuration
    gemini_api_key: str = ""
    gemini_api_keys: str = ""  # Comma-separated, tried in order after GEMINI_API_KEY
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    # Tried in this order for every key (most capable / cheapest first)
    llm_models: str = "gemini-2.0-flash,gemini-2.0-flash-lite,gemini-2.5-flash,gemini-flash-latest"
    llm_max_output_tokens: int = 4096
    llm_temperature: float = 0.4
    llm_timeout_seconds: float = 60.0

    # Persistence
    storage_backend: Literal["memory", "database"] = "memory"
    database_url: str = "sqlite:///./career_coach.db"

    # Raw upload archive (empty disables it)
    upload_dir: str = ""
    max_upload_bytes: int = 10 * 1024 * 1024

    # Scan cache
    scan_cache_ttl: int = 3600
    scan_cache_size: int = 256

    # Rate limiting
    rate_limit_per_minute: int = 10

    # Server configuration
    port: int = 5000
    host: str = "0.0.0.0"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    environment: Literal["development", "production"] = "development"
    cors_origins: str = "*"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def api_keys(self) -> list[str]:
        """All configured Gemini keys, GEMINI_API_KEY first, without duplicates."""
        keys: list[str] = []
        for key in [self.gemini_api_key, *_split_csv(self.gemini_api_keys)]:
            key = key.strip()
            if key and key not in keys:
                keys.append(key)
        return keys

    @property
    def has_gemini_key(self) -> bool:
        """Check if at least one Gemini API key is configured."""
        return bool(self.api_keys)

    @property
    def model_names(self) -> list[str]:
        """Model identifiers in preference order."""
        return _split_csv(self.llm_models)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins) or ["*"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
