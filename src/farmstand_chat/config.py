"""Application settings loaded from the environment."""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FARMSTAND_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Farmstand Chat API"
    preview_length: int = Field(default=75, gt=0, description="Max characters kept in a conversation preview")
    send_timeout: float = Field(default=10.0, gt=0, description="Seconds before a message insert is abandoned")
    store_timeout: float = Field(default=10.0, gt=0, description="Seconds before a lookup or create is abandoned")
    subscription_buffer: int = Field(default=256, gt=0, description="Undelivered events kept per subscriber")
    rate_limit: int = Field(default=120, gt=0)
    rate_window: int = Field(default=60, gt=0, description="Rate limit window in seconds")
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: List[str] = ["*"]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
