"""Protocol interfaces for all Hourbank abstractions.

All inter-layer communication uses these Protocols: structural typing,
no inheritance required, easy to test with isinstance().
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from hourbank.models.escrow import EscrowEvent, EscrowRecord


# ---------------------------------------------------------------------------
# Persistence: Escrow Store (balances + records in one transaction boundary)
# ---------------------------------------------------------------------------

@runtime_checkable
class IEscrowStore(Protocol):
    """Account balances and escrow records behind one atomic commit.

    ``insert_escrow`` and ``commit_transition`` are all-or-nothing: the balance
    movement, the record write, and the timeline event either all land or none
    do.
    """

    def put_account(self, account_id: str, balance: Decimal) -> None: ...

    def get_balance(self, account_id: str) -> Decimal: ...

    def get_record(self, record_id: str) -> EscrowRecord | None: ...

    def list_events(self, record_id: str) -> list[EscrowEvent]: ...

    def list_due(self, now: datetime, limit: int) -> list[EscrowRecord]: ...

    def list_open(self) -> list[EscrowRecord]: ...

    def insert_escrow(self, record: EscrowRecord, event: EscrowEvent) -> None:
        """Debit ``record.client_id`` by ``record.amount`` and persist the record.

        Raises InsufficientFundsError if the balance does not cover the amount.
        """
        ...

    def commit_transition(
        self,
        previous: EscrowRecord,
        updated: EscrowRecord,
        event: EscrowEvent,
        credit_account: str | None = None,
    ) -> None:
        """Replace ``previous`` with ``updated`` if the stored version still matches.

        When ``credit_account`` is given, ``previous.amount`` is credited to it
        in the same commit. Raises ConcurrentModificationError on a lost race.
        """
        ...

    def ping(self) -> bool: ...


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@runtime_checkable
class INotificationSink(Protocol):
    """Fire-and-forget delivery of escrow events to users."""

    def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None: ...
