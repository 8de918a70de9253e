from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./karma.db"
    redis_url: str = "redis://localhost:6379/0"

    # Algorand node access
    algod_server: str = "https://mainnet-api.algonode.cloud"
    algod_port: str = ""
    indexer_server: str = "https://mainnet-idx.algonode.cloud"
    indexer_port: str = ""
    algo_api_token: str = ""
    algo_request_timeout_seconds: float = 10.0

    # Signing accounts
    # The claim account falls back to the clawback account when unset.
    clawback_token_mnemonic: str = ""
    claim_token_mnemonic: str = ""
    replenish_token_address: str | None = None

    # Game assets
    karma_asset_unit_name: str = "KRMA"
    enlightenment_asset_unit_name: str = "ENLT"

    # Settlement thresholds
    karma_auto_claim_daily_threshold: int = 500
    karma_auto_claim_monthly_threshold: int = 50
    settlement_max_group_size: int = 16
    settlement_lease_ttl_seconds: int = 15 * 60
    settlement_confirmation_rounds: int = 5

    # Network balance monitoring
    karma_low_token_amount: int = 200_000
    karma_replenish_amount: int = 100_000
    enlightenment_low_token_amount: int = 100

    # Remote call policy
    remote_retry_max_attempts: int = 5
    remote_retry_base_backoff_seconds: float = 0.5
    remote_retry_backoff_multiplier: float = 2.0
    remote_retry_max_backoff_seconds: float = 8.0
    remote_retry_jitter_seconds: float = 0.25
    remote_rate_limit_concurrency: int = 4
    remote_rate_limit_min_interval_seconds: float = 0.1
    holdings_cache_ttl_seconds: int = 3600

    # Operator notifications
    rewards_slack_webhook_url: str | None = None
    rewards_slack_channel: str | None = None
    rewards_alert_mentions: list[str] = Field(default_factory=list)

    @field_validator("rewards_alert_mentions", mode="before")
    @classmethod
    def _parse_mentions(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Job scheduler
    reward_job_scheduler_enabled: bool = True
    reward_job_schedule_path: str = "config/schedules.toml"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
