from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./cashback.db"
    database_echo: bool = False

    # Internal API security
    internal_api_key: str = ""

    # Cashback ledger
    cashback_balance_backfill_batch_size: int = 100
    cashback_allow_negative_balance: bool = True

    # Cashback expiration sweep
    cashback_expiration_worker_enabled: bool = False
    cashback_expiration_interval_seconds: int = 3600
    cashback_expiration_batch_size: int = 500


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
