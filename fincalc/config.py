"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (remote profile/recommendation store)
    database_url: str = "sqlite:///./fincalc.db"

    # External Services
    fee_data_api_base: str = "http://localhost:8001"

    # Service
    service_name: str = "fincalc"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0

    # Cache
    schedule_cache_ttl_ms: int = 24 * 60 * 60 * 1000
    cache_refresh_threshold: float = 0.8  # Refresh once 20% of TTL remains
    cache_refresh_interval_seconds: float = 30.0
    cache_max_concurrent_refresh: int = 3
    storage_quota_bytes: int | None = 5 * 1024 * 1024  # Browser-like local storage cap

    # Fallback
    fallback_max_data_age_ms: int = 7 * 24 * 60 * 60 * 1000
    fallback_graceful_degradation: bool = True
    fallback_notify_user: bool = True

    # Profiles
    profile_history_limit: int = 100


settings = Settings()
