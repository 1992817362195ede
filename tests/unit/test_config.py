"""Tests for configuration defaults and env overrides."""

from __future__ import annotations

from hourbank.core.config import AppSettings, EscrowConfig, NotificationConfig, SchedulerConfig


def test_default_settings():
    settings = AppSettings()
    assert settings.environment == "dev"
    assert settings.store.backend == "memory"
    assert settings.notifications.backend == "log"


def test_escrow_config_defaults():
    config = EscrowConfig()
    assert config.hold_window_hours == 72
    assert config.max_conflict_retries == 3


def test_scheduler_config_defaults():
    config = SchedulerConfig()
    assert config.enabled is True
    assert config.interval_seconds == 300
    assert config.batch_size == 100


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("HOURBANK_ESCROW_HOLD_WINDOW_HOURS", "24")
    monkeypatch.setenv("HOURBANK_SCHEDULER_BATCH_SIZE", "10")
    monkeypatch.setenv("HOURBANK_NOTIFY_BACKEND", "redis")
    assert EscrowConfig().hold_window_hours == 24
    assert SchedulerConfig().batch_size == 10
    assert NotificationConfig().backend == "redis"
