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

    # Database
    database_url: str = "sqlite:///data/chat_relay.db"

    # Credentials
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    token_expiration_minutes: int = 60

    # Model provider
    llm_api_url: str = "https://ark.cn-beijing.volces.com/api/v3/chat/completions"
    llm_api_key: str | None = None
    llm_model: str = "doubao-lite"
    llm_timeout_connect: float = 10.0
    llm_timeout_read: float = 60.0  # first byte and between chunks

    # Push sessions
    heartbeat_interval: float = 20.0
    idle_timeout: float = 60.0
    disconnect_poll_interval: float = 1.0
    max_sessions: int = 1000
    client_retry_ms: int = 3000  # EventSource reconnection delay hint

    # Registration rules
    username_min_length: int = 3
    username_max_length: int = 50
    password_min_length: int = 6

    # Logging
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: list[str] = ["http://localhost:3001"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
