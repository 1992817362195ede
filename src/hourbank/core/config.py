"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class EscrowConfig(BaseSettings):
    """Escrow ledger behaviour."""

    model_config = {"env_prefix": "HOURBANK_ESCROW_"}

    hold_window_hours: int = 72
    max_conflict_retries: int = 3


class SchedulerConfig(BaseSettings):
    """Auto-release scheduler configuration."""

    model_config = {"env_prefix": "HOURBANK_SCHEDULER_"}

    enabled: bool = True
    interval_seconds: int = 300
    batch_size: int = 100


class StoreConfig(BaseSettings):
    """Balance and escrow record store selection."""

    model_config = {"env_prefix": "HOURBANK_STORE_"}

    backend: Literal["memory", "dynamodb"] = "memory"


class DynamoDBConfig(BaseSettings):
    """DynamoDB configuration."""

    model_config = {"env_prefix": "HOURBANK_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis configuration."""

    model_config = {"env_prefix": "HOURBANK_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0


class NotificationConfig(BaseSettings):
    """Notification sink configuration."""

    model_config = {"env_prefix": "HOURBANK_NOTIFY_"}

    backend: Literal["log", "memory", "redis"] = "log"
    channel: str = "hourbank-notifications"
    max_list_length: int = 500


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "HOURBANK_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    escrow: EscrowConfig = EscrowConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    store: StoreConfig = StoreConfig()
    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    notifications: NotificationConfig = NotificationConfig()
