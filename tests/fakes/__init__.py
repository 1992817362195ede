"""Shared test doubles: re-export memory backends plus a controllable clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hourbank.models.escrow import Actor, ActorRole
from hourbank.persistence.memory_backend import MemoryEscrowStore, MemoryNotificationSink

CLIENT = Actor(user_id="client-1", role=ActorRole.CLIENT)
FREELANCER = Actor(user_id="freelancer-1", role=ActorRole.FREELANCER)
ADMIN = Actor(user_id="admin-1", role=ActorRole.ADMIN)
STRANGER = Actor(user_id="client-2", role=ActorRole.CLIENT)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FailingNotificationSink:
    """INotificationSink that always raises."""

    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, user_id: str, event_type: str, payload: dict) -> None:
        self.attempts += 1
        raise RuntimeError("sink down")


def total_credit(store: MemoryEscrowStore) -> Decimal:
    """Balances plus credit still held in open escrows."""
    return sum(store.balances().values(), Decimal("0")) + store.open_amount()


__all__ = [
    "ADMIN", "CLIENT", "FREELANCER", "STRANGER",
    "FailingNotificationSink", "FakeClock", "MemoryEscrowStore", "MemoryNotificationSink",
    "total_credit",
]
