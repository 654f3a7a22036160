from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ledger settings, read from `LEDGER_*` environment variables or `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Persistence; without a Mongo URI the in-memory manager is used
    mongo_uri: Optional[str] = None
    mongo_db: str = "creator_ledger"

    # Audit trail
    ledger_log_path: Path = Path("logs/ledger.jsonl")
    log_level: str = "INFO"
    log_format: str = "json"

    # Protocol rules, amounts in minor currency units
    min_tip_amount: int = 5
    trial_days: int = 7
    period_days: int = 30
    currency: str = "USD"

    # Conflict retry
    conflict_max_attempts: int = 5
    conflict_base_delay_ms: int = 10
    conflict_max_delay_ms: int = 500

    item_cache_ttl_seconds: int = 300

    # Header the identity provider / gateway puts the session account in
    account_header: str = "X-Account-Id"


@lru_cache
def get_settings() -> Settings:
    return Settings()
