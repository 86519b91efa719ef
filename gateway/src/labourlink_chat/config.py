"""Server configuration.

Values come from ``LABOURCHAT_*`` environment variables or a ``.env`` file;
command line flags given to ``labourlink-chat serve`` take precedence.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LABOURCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="Host to bind")
    port: int = Field(default=4000, description="Port to bind")
    db_path: str | None = Field(
        default=None,
        description="SQLite database path; in-memory stores are used when unset",
    )
    users_file: str | None = Field(
        default=None,
        description="JSON file with the user directory rows",
    )
    typing_freshness_seconds: float = Field(
        default=10.0,
        description="Seconds after which a typing signal is treated as stale",
    )
    session_ttl_seconds: int = Field(
        default=30 * 24 * 60 * 60,
        description="Lifetime of issued session tokens",
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Render logs as JSON lines")


@lru_cache
def get_settings() -> Settings:
    return Settings()
