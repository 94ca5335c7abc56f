"""
Configuration management for the pairing service.
Loads settings from environment variables.
"""
from typing import List, Union
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis configuration
    REDIS_HOST: str = Field(default="localhost", description="Redis host")
    REDIS_PORT: int = Field(default=6379, description="Redis port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str = Field(default="", description="Redis password (empty if not set)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum Redis connection pool size")

    # Storage backend
    STORE_BACKEND: str = Field(
        default="redis",
        description="Backend for pool, ledger and rooms: 'redis' or 'memory'"
    )

    # FastAPI configuration
    API_HOST: str = Field(default="0.0.0.0", description="FastAPI host")
    API_PORT: int = Field(default=3001, description="FastAPI port")

    # Origin allow-list (comma-separated string in env, converted to list)
    CORS_ORIGINS: Union[str, List[str]] = Field(
        default="http://localhost:3000",
        validate_default=True,
        description="Comma-separated origins allowed to reach the HTTP API and the event gateway"
    )

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse comma-separated origins to list."""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            if not v.strip():
                return []
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return []

    ENVIRONMENT: str = Field(default="production", description="'development' or 'production'")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # Sweeper configuration
    SWEEP_INTERVAL_SECONDS: int = Field(default=300, description="Sweeper interval in production")
    SWEEP_INTERVAL_DEV_SECONDS: int = Field(default=60, description="Sweeper interval in development")
    ROOM_EMPTY_GRACE_SECONDS: int = Field(
        default=600,
        description="How long a room may stay at zero members before the sweeper removes it"
    )
    ROOM_MAX_AGE_HOURS: int = Field(default=6, description="Rooms older than this are evicted regardless of members")
    MATCH_MAX_AGE_SECONDS: int = Field(default=3600, description="Matches older than this are ended and removed")

    # Matchmaking configuration
    MATCH_CLAIM_RETRIES: int = Field(
        default=3,
        description="Attempts for removing both matched users from the pool when the store errors"
    )

    # Room directory configuration
    ROOM_MAX_MEMBERS: int = Field(default=100, description="Upper bound for the projected member count")

    # Media (SFU) service configuration
    MEDIA_API_KEY: str = Field(default="", description="API key of the external media service")
    MEDIA_API_SECRET: str = Field(default="", description="API secret of the external media service")
    MEDIA_SERVER_URL: str = Field(default="", description="Public URL of the external media service")
    MEDIA_TOKEN_TTL_SECONDS: int = Field(default=3600, description="Lifetime of media access tokens")

    # Cross-instance event relay
    EVENT_CHANNEL: str = Field(default="gateway:events", description="Redis pub/sub channel for gateway events")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def sweep_interval(self) -> int:
        """Sweeper interval for the current environment."""
        if self.is_development:
            return self.SWEEP_INTERVAL_DEV_SECONDS
        return self.SWEEP_INTERVAL_SECONDS


# Global settings instance
settings = Settings()
