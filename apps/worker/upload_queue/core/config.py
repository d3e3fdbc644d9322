"""Application configuration."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    encryption_key: str
    data_dir: Path = Path("data")
    storage_dir: Path = Path("data/uploads")
    master_database_url: str | None = None

    remote_api_base: str = "https://api.torbox.app"
    remote_api_version: str = "v1"
    remote_timeout_seconds: float = 30.0
    remote_user_agent: str = "upload-queue/1.0"

    processor_interval_seconds: float = 5.0
    processor_autostart: bool = True
    client_cache_size: int = 1000
    client_cache_ttl_seconds: float = 1800.0
    tenant_engine_cache_size: int = 200

    auth_provider: Literal["mock", "firebase"] = "firebase"
    firebase_project_id: str | None = None
    firebase_audience: str | None = None

    model_config = SettingsConfigDict(env_prefix="UPLOADQ_", extra="ignore")

    @property
    def resolved_master_database_url(self) -> str:
        if self.master_database_url:
            return self.master_database_url
        return f"sqlite:///{self.data_dir / 'master.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
