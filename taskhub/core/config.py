from functools import lru_cache

from fastapi import Depends
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Annotated


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./tasks.db"

    redis_dsn: str = "redis://localhost:6379/0"
    redis_pool_size: int = 5

    cache_namespace: str = "taskhub:"
    cache_ttl_seconds: int = 300  # default Redis TTL
    tasks_cache_key: str = "all_tasks"
    tasks_cache_ttl_seconds: int = 60
    cache_single_flight: bool = False
    single_flight_max_keys: int = 10_000
    single_flight_lock_ttl: int = 300

    events_channel: str = "task-updates"
    socket_event_name: str = "task-update"

    log_level: str = "INFO"
    task_service_port: int = 3002
    notification_service_port: int = 3001


@lru_cache
def get_settings() -> Settings:
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
