import os
from functools import lru_cache

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = Field("http://127.0.0.1:5000", alias="SKILLPATH_API_URL")
    api_timeout_seconds: float = Field(10.0, alias="SKILLPATH_API_TIMEOUT", gt=0)
    cache_url: str = Field("sqlite:///skillpath-cache.db", alias="SKILLPATH_CACHE_URL")
    cache_echo: bool = Field(False, alias="SKILLPATH_CACHE_ECHO")
    default_duration_days: int = Field(10, alias="SKILLPATH_DEFAULT_DURATION", ge=1)
    strict_ownership: bool = Field(True, alias="SKILLPATH_STRICT_OWNERSHIP")
    broadcast_retention_seconds: int = Field(3600, alias="SKILLPATH_BROADCAST_RETENTION", ge=0)

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid skillpath configuration: {exc}") from exc
