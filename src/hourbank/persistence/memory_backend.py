"""In-memory backends: dict-backed store and sinks for tests and single-process runs."""

from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import ExitStack, contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterator

from hourbank.core.exceptions import ConcurrentModificationError, InsufficientFundsError
from hourbank.models.escrow import EscrowEvent, EscrowRecord, EscrowStatus


class MemoryEscrowStore:
    """Dict-backed IEscrowStore guarded by per-key locks.

    Writers lock every account and record they touch, always in sorted key
    order so two writers can never deadlock. Records are frozen models that
    are swapped wholesale, so readers take no locks and never see a
    half-applied change.
    """

    def __init__(self) -> None:
        self._balances: dict[str, Decimal] = {}
        self._records: dict[str, EscrowRecord] = {}
        self._events: dict[str, list[EscrowEvent]] = defaultdict(list)
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def _locked(self, *keys: str) -> Iterator[None]:
        with self._registry_lock:
            locks = [self._locks.setdefault(k, threading.Lock()) for k in sorted(set(keys))]
        with ExitStack() as stack:
            for lock in locks:
                stack.enter_context(lock)
            yield

    # ---- accounts ----

    def put_account(self, account_id: str, balance: Decimal) -> None:
        with self._locked(f"account:{account_id}"):
            self._balances[account_id] = Decimal(balance)

    def get_balance(self, account_id: str) -> Decimal:
        return self._balances.get(account_id, Decimal("0"))

    def balances(self) -> dict[str, Decimal]:
        """Snapshot of every known account balance."""
        return dict(self._balances)

    # ---- records ----

    def get_record(self, record_id: str) -> EscrowRecord | None:
        return self._records.get(record_id)

    def list_events(self, record_id: str) -> list[EscrowEvent]:
        return sorted(self._events.get(record_id, []), key=lambda e: e.sequence)

    def list_due(self, now: datetime, limit: int) -> list[EscrowRecord]:
        due = [r for r in list(self._records.values()) if r.is_due(now)]
        due.sort(key=lambda r: r.auto_release_at)
        return due[:limit]

    def list_open(self) -> list[EscrowRecord]:
        records = [r for r in list(self._records.values()) if r.is_open]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def insert_escrow(self, record: EscrowRecord, event: EscrowEvent) -> None:
        with self._locked(f"account:{record.client_id}", f"record:{record.id}"):
            if record.id in self._records:
                raise ConcurrentModificationError(record.id, 0)
            balance = self.get_balance(record.client_id)
            if balance < record.amount:
                raise InsufficientFundsError(record.client_id, balance, record.amount)
            self._balances[record.client_id] = balance - record.amount
            self._records[record.id] = record
            self._events[record.id].append(event)

    def commit_transition(
        self,
        previous: EscrowRecord,
        updated: EscrowRecord,
        event: EscrowEvent,
        credit_account: str | None = None,
    ) -> None:
        keys = [f"record:{previous.id}"]
        if credit_account is not None:
            keys.append(f"account:{credit_account}")
        with self._locked(*keys):
            current = self._records.get(previous.id)
            if current is None or current.version != previous.version:
                raise ConcurrentModificationError(previous.id, previous.version)
            if credit_account is not None:
                self._balances[credit_account] = self.get_balance(credit_account) + previous.amount
            self._records[previous.id] = updated
            self._events[previous.id].append(event)

    def ping(self) -> bool:
        return True

    # ---- test helpers ----

    def open_amount(self) -> Decimal:
        """Sum of amounts still held or disputed."""
        return sum(
            (r.amount for r in self._records.values()
             if r.status in (EscrowStatus.HELD, EscrowStatus.DISPUTED)),
            Decimal("0"),
        )


class MemoryNotificationSink:
    """List-backed INotificationSink for unit tests."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((user_id, event_type, dict(payload)))

    def for_user(self, user_id: str) -> list[tuple[str, dict[str, Any]]]:
        return [(etype, payload) for uid, etype, payload in self.sent if uid == user_id]
