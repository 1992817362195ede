"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from hourbank.core.config import AppSettings
from hourbank.core.protocols import IEscrowStore, INotificationSink
from hourbank.persistence.dynamodb_backend import DynamoDBEscrowStore
from hourbank.persistence.log_backend import LoggingNotificationSink
from hourbank.persistence.memory_backend import MemoryEscrowStore, MemoryNotificationSink
from hourbank.persistence.redis_backend import RedisNotificationSink


def create_store(settings: AppSettings) -> IEscrowStore:
    """Build the balance + escrow record store selected in settings."""
    if settings.store.backend == "dynamodb":
        return DynamoDBEscrowStore(
            table_suffix=settings.dynamodb.table_suffix,
            region=settings.dynamodb.region,
            endpoint_url=settings.dynamodb.endpoint_url,
        )
    return MemoryEscrowStore()


def create_notification_sink(settings: AppSettings) -> INotificationSink:
    """Build the notification sink selected in settings."""
    backend = settings.notifications.backend
    if backend == "redis":
        return RedisNotificationSink(
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
            channel=settings.notifications.channel,
            max_list_length=settings.notifications.max_list_length,
        )
    if backend == "memory":
        return MemoryNotificationSink()
    return LoggingNotificationSink()


def create_persistence(settings: AppSettings | None = None):
    """Create wired-up persistence backends from application settings.

    Returns:
        Tuple of (store, notifications).
    """
    if settings is None:
        settings = AppSettings()
    return create_store(settings), create_notification_sink(settings)
