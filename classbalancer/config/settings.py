from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "ClassBalancer"
    debug: bool = True
    redis_url: str = Field("redis://localhost:6379/0", validation_alias="REDIS_URL")
    cache_enabled: bool = False
    cache_ttl_seconds: int = 3600
    default_group_count: int = 6
    numeric_majority: float = 0.5
    tie_tolerance: float = 0.25


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
