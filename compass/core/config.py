"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Compass Core"
    debug: bool = False
    log_level: str = "INFO"
    api_base_url: str = "http://localhost:3001/api"
    api_key: str | None = None
    request_timeout_seconds: float = 10.0
    timezone: str = "UTC"
    task_page_size: int = 50
    task_list_stale_seconds: int = 60
    engine_poll_seconds: int = 30
    engine_stale_seconds: int = 10
    clock_tick_seconds: int = 1
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "compass"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
