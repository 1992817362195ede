"""Integration tests against LocalStack DynamoDB and a live Redis."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

import pytest

from hourbank.escrow.disputes import DisputeResolver
from hourbank.escrow.ledger import EscrowLedger
from hourbank.models.escrow import Actor, ActorRole, DisputeDecision, EscrowStatus
from hourbank.persistence.dynamodb_backend import DynamoDBEscrowStore
from hourbank.persistence.memory_backend import MemoryNotificationSink
from hourbank.persistence.redis_backend import RedisNotificationSink
from tests.integration.conftest import (
    LOCALSTACK_URL,
    REDIS_HOST,
    skip_no_localstack,
    skip_no_redis,
)

ADMIN = Actor(user_id="admin-int", role=ActorRole.ADMIN)


@pytest.fixture
def parties():
    suffix = uuid4().hex[:8]
    return (
        Actor(user_id=f"client-{suffix}", role=ActorRole.CLIENT),
        Actor(user_id=f"freelancer-{suffix}", role=ActorRole.FREELANCER),
    )


@pytest.fixture
def store(localstack_tables):
    return DynamoDBEscrowStore(table_suffix=localstack_tables, endpoint_url=LOCALSTACK_URL)


@pytest.fixture
def ledger(store):
    return EscrowLedger(store, MemoryNotificationSink())


@skip_no_localstack
class TestDynamoDBLedger:
    def test_concurrent_release_credits_once(self, store, ledger, parties):
        client, freelancer = parties
        store.put_account(client.user_id, Decimal("10"))
        record = ledger.create_escrow(
            client, client.user_id, freelancer.user_id, "svc-int", Decimal("5"), "",
        )

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: ledger.release(record.id, client), range(4)))

        assert sum(r.applied for r in results) == 1
        assert store.get_balance(freelancer.user_id) == Decimal("5")
        assert store.get_balance(client.user_id) == Decimal("5")

    def test_dispute_refund(self, store, ledger, parties):
        client, freelancer = parties
        store.put_account(client.user_id, Decimal("10"))
        record = ledger.create_escrow(
            client, client.user_id, freelancer.user_id, "svc-int", Decimal("3"), "",
        )
        ledger.open_dispute(record.id, "No delivery", client)
        DisputeResolver(ledger, MemoryNotificationSink()).resolve(
            record.id, DisputeDecision.REFUND, "Refunded", ADMIN,
        )

        assert ledger.get_status(record.id).status == EscrowStatus.REFUNDED
        assert store.get_balance(client.user_id) == Decimal("10")
        assert [e.sequence for e in ledger.get_timeline(record.id)] == [1, 2, 3]


@skip_no_redis
def test_redis_sink_round_trip():
    sink = RedisNotificationSink(host=REDIS_HOST)
    user_id = f"user-{uuid4().hex[:8]}"
    sink.notify(user_id, "escrow_created", {"record_id": "esc_int"})
    assert sink.inbox(user_id)[0]["payload"] == {"record_id": "esc_int"}
