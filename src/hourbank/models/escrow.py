"""Escrow record, timeline event, and actor models.

Records are frozen: every state change produces a new instance with a bumped
``version`` which the store commits with a compare-and-swap.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class EscrowStatus(StrEnum):
    HELD = "held"
    RELEASED = "released"
    DISPUTED = "disputed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)


class EscrowEventType(StrEnum):
    CREATED = "created"
    ACCEPTED = "accepted"
    DISPUTED = "disputed"
    RELEASED = "released"
    REFUNDED = "refunded"


class ActorRole(StrEnum):
    CLIENT = "client"
    FREELANCER = "freelancer"
    ADMIN = "admin"
    SYSTEM = "system"


class DisputeDecision(StrEnum):
    RELEASE = "release"
    REFUND = "refund"


class Actor(BaseModel):
    """Authenticated party performing an escrow action."""

    model_config = {"frozen": True}

    user_id: str
    role: ActorRole


SYSTEM_ACTOR = Actor(user_id="system", role=ActorRole.SYSTEM)


class EscrowRecord(BaseModel):
    """One held-then-resolved transfer of time-credits."""

    model_config = {"frozen": True}

    id: str
    client_id: str
    freelancer_id: str
    service_id: str
    amount: Decimal = Field(gt=0)
    terms: str = ""
    status: EscrowStatus = EscrowStatus.HELD
    created_at: datetime
    auto_release_at: datetime

    # --- Lifecycle metadata ---
    accepted_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    disputed_by: Optional[str] = None
    dispute_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None

    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal

    def is_due(self, now: datetime) -> bool:
        """True when a held record has outlived its hold window."""
        return self.status == EscrowStatus.HELD and self.auto_release_at <= now

    def time_remaining(self, now: datetime) -> timedelta:
        """Time left before auto-release, floored at zero."""
        return max(self.auto_release_at - now, timedelta(0))

    def recipient_for(self, status: EscrowStatus) -> str:
        """Account credited when the record settles into ``status``."""
        if status == EscrowStatus.RELEASED:
            return self.freelancer_id
        if status == EscrowStatus.REFUNDED:
            return self.client_id
        raise ValueError(f"{status} is not a settlement status")

    def parties(self) -> tuple[str, str]:
        return self.client_id, self.freelancer_id


class EscrowEvent(BaseModel):
    """A single committed state change, used to render the escrow timeline."""

    model_config = {"frozen": True}

    record_id: str
    sequence: int
    event_type: EscrowEventType
    from_status: Optional[EscrowStatus] = None
    to_status: EscrowStatus
    actor_id: str
    actor_role: ActorRole
    occurred_at: datetime
    note: str = ""


class TransitionResult(BaseModel):
    """Outcome of a release or refund call.

    ``applied`` is False when the record was already in the requested terminal
    state and nothing was credited.
    """

    record: EscrowRecord
    applied: bool


class EscrowSummary(BaseModel):
    """Aggregates over open escrows for the admin dashboard."""

    held_count: int = 0
    disputed_count: int = 0
    held_amount: Decimal = Decimal("0")
    disputed_amount: Decimal = Decimal("0")

    @property
    def open_amount(self) -> Decimal:
        return self.held_amount + self.disputed_amount
