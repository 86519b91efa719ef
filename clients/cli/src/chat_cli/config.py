from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings, overridable with ``LABOURCHAT_CLIENT_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="LABOURCHAT_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str = Field(default="http://localhost:4000", description="Chat service base URL")
    session_token: str | None = Field(default=None, description="Bearer token for the signed-in user")
    timeout_seconds: float = Field(default=15.0, description="Per-request timeout")


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
