"""Application configuration loaded from environment variables."""

from datetime import tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "IntervalSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str = ""  # asyncpg DSN; empty = in-process store

    # --- Calendar ---
    timezone: str = "UTC"  # IANA name used for "today" and interval dates

    # --- Identity ---
    # Single-tenant deployments may omit userId; it then resolves to
    # default_user_id.  Multi-tenant deployments must send it explicitly.
    single_tenant: bool = True
    default_user_id: str = "default_user"

    # --- CORS ---
    cors_origins: list[str] = ["*"]

    # --- Sync agent ---
    sync_enabled: bool = False
    sync_user_id: str = "default_user"
    sync_source_url: str = ""  # Health Connect bridge base URL
    api_endpoints: list[str] = [
        "http://localhost:3000/api",
        "http://10.0.2.2:3000/api",
        "http://127.0.0.1:3000/api",
    ]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def tzinfo(self) -> tzinfo:
        return ZoneInfo(self.timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
