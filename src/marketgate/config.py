"""Configuration module using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Upstream quote provider
    finnhub_api_key: str | None = None
    finnhub_base_url: str = "https://finnhub.io/api/v1"
    provider_forbidden_backoff_seconds: float = 600.0  # 10 minutes
    upstream_calls_per_minute: int = 60  # Finnhub free tier ceiling

    # Quote fetching
    quote_timeout_seconds: float = 5.0
    quote_cache_ttl_seconds: float = 30.0
    quote_pacing_delay_seconds: float = 0.1
    quote_max_concurrency: int = 1
    quote_batch_max_symbols: int = 200

    # Auth lockout
    auth_max_attempts: int = 5
    auth_window_seconds: float = 900.0  # 15 minutes
    auth_lockout_seconds: float = 1800.0  # 30 minutes

    # Inbound API tier for the quote endpoint
    rate_limit_data_per_minute: int = 60

    # HTTP Client
    http_max_retries: int = 0
    http_backoff_factor: float = 0.5

    # Logging
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @property
    def provider_configured(self) -> bool:
        """Whether an upstream credential is available."""
        return bool(self.finnhub_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
