"""Unit test fixtures: in-memory engine wired to a fake clock."""

from __future__ import annotations

from decimal import Decimal

import pytest

from hourbank.core.config import EscrowConfig, SchedulerConfig
from hourbank.escrow.disputes import DisputeResolver
from hourbank.escrow.ledger import EscrowLedger
from hourbank.escrow.scheduler import AutoReleaseScheduler
from tests.fakes import CLIENT, FREELANCER, FakeClock, MemoryEscrowStore, MemoryNotificationSink


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = MemoryEscrowStore()
    store.put_account(CLIENT.user_id, Decimal("10"))
    store.put_account(FREELANCER.user_id, Decimal("0"))
    return store


@pytest.fixture
def sink():
    return MemoryNotificationSink()


@pytest.fixture
def ledger(store, sink, clock):
    return EscrowLedger(store, sink, config=EscrowConfig(), clock=clock)


@pytest.fixture
def resolver(ledger, sink):
    return DisputeResolver(ledger, sink)


@pytest.fixture
def scheduler(ledger, clock):
    return AutoReleaseScheduler(ledger, config=SchedulerConfig(batch_size=50), clock=clock)


@pytest.fixture
def make_escrow(ledger):
    def _make(amount: str = "5", terms: str = "Logo design, 5 hours"):
        return ledger.create_escrow(
            CLIENT, CLIENT.user_id, FREELANCER.user_id, "service-42", Decimal(amount), terms,
        )
    return _make
