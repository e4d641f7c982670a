from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://complaints:complaints@db:5432/complaints"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_echo: bool = False
    log_level: str = "INFO"
    resolution_reward_points: int = 10
    notifications_list_limit: int = 50
    user_search_limit: int = 20
    blob_store_root: str = "./var/blobs"
    blob_public_base_url: str = "/blobs"
    session_secret: str = ""
    session_max_age_seconds: int = 86400
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def parsed_blob_public_base_url(self) -> str:
        return self.blob_public_base_url.strip().rstrip("/")


@lru_cache(1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
