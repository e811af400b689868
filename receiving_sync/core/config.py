"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database - SQLite file by default, PostgreSQL in production
    database_url: str = "sqlite:///./data/receiving.db"
    sql_echo: bool = False

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:8081,http://localhost:19006"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_prefix: str = "/api"

    # Rate limiting. Handhelds push one request per scan.
    rate_limit_enabled: bool = True
    scan_rate_limit: str = "600/minute"
    write_rate_limit: str = "60/minute"
    read_rate_limit: str = "120/minute"

    # Upper bound on records accepted by one batch upload
    max_batch_size: int = 5000

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            return ""
        if not v.startswith("/"):
            v = "/" + v
        return v.rstrip("/")

    @field_validator("database_url")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        url = v.strip()
        if url.startswith("postgres://"):
            return "postgresql+psycopg://" + url[len("postgres://"):]
        if url.startswith("postgresql://"):
            return "postgresql+psycopg://" + url[len("postgresql://"):]
        return url

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Warn about development-only settings outside debug mode."""
        import warnings

        if not self.debug and self.cors_origins.strip() == "*":
            warnings.warn(
                "CORS_ORIGINS is '*' in production mode. Restrict it to the known client origins.",
                UserWarning,
                stacklevel=2,
            )
        if self.max_batch_size < 1:
            raise ValueError("MAX_BATCH_SIZE must be at least 1")
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list, filtering localhost in production."""
        if self.cors_origins == "*":
            return ["*"]

        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

        if not self.debug:
            localhost_patterns = ["localhost", "127.0.0.1", "0.0.0.0"]
            origins = [o for o in origins if not any(p in o for p in localhost_patterns)]

        return origins

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
