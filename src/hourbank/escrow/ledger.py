"""EscrowLedger: the sole authority over escrow records and the balances they hold.

State machine::

    held --release()--> released (terminal)
    held --refund()--> refunded (terminal)
    held --open_dispute()--> disputed
    disputed --release() [admin]--> released (terminal)
    disputed --refund() [admin]--> refunded (terminal)

Every mutation reads the record, decides, and commits against the version it
read. A lost race is re-read and re-decided, so a duplicate release that lands
after the first one sees a terminal record and reports it instead of crediting
twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from hourbank.core.config import EscrowConfig
from hourbank.core.exceptions import (
    ConcurrentModificationError,
    InvalidRequestError,
    InvalidTransitionError,
    RecordNotFoundError,
    StoreUnavailableError,
    UnauthorizedError,
)
from hourbank.core.protocols import IEscrowStore, INotificationSink
from hourbank.core.types import Clock, JsonDict
from hourbank.models.escrow import (
    Actor,
    ActorRole,
    EscrowEvent,
    EscrowEventType,
    EscrowRecord,
    EscrowStatus,
    EscrowSummary,
    TransitionResult,
)

logger = logging.getLogger(__name__)

_SETTLEMENT_EVENTS = {
    EscrowStatus.RELEASED: EscrowEventType.RELEASED,
    EscrowStatus.REFUNDED: EscrowEventType.REFUNDED,
}

_ACTIONS = {
    EscrowStatus.RELEASED: "release",
    EscrowStatus.REFUNDED: "refund",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    return f"esc_{uuid4().hex}"


def _parse_amount(amount: Any) -> Decimal:
    """Validate an escrow amount: a finite, positive Decimal. Floats are refused."""
    if isinstance(amount, float):
        raise InvalidRequestError(f"Escrow amount must be a Decimal or string, got float {amount!r}")
    try:
        amount = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidRequestError(f"Escrow amount {amount!r} is not a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidRequestError(f"Escrow amount must be positive, got {amount}")
    return amount


class EscrowLedger:
    """Creates escrow records and drives them through the state machine.

    Balances are never touched directly: every debit and credit goes through
    the store's atomic commit together with the record change it belongs to.
    """

    def __init__(
        self,
        store: IEscrowStore,
        notifications: INotificationSink,
        *,
        config: EscrowConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._config = config or EscrowConfig()
        self._clock = clock

    @property
    def hold_window(self) -> timedelta:
        return timedelta(hours=self._config.hold_window_hours)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_escrow(
        self,
        actor: Actor,
        client_id: str,
        freelancer_id: str,
        service_id: str,
        amount: Decimal,
        terms: str,
    ) -> EscrowRecord:
        """Debit the client and open a held escrow in one atomic commit.

        Raises:
            InvalidRequestError: non-positive, non-finite or float amount, or
                client paying themselves.
            UnauthorizedError: the actor is not the client.
            InsufficientFundsError: the client balance does not cover ``amount``.
            StoreUnavailableError: the commit kept losing races.
        """
        amount = _parse_amount(amount)
        if client_id == freelancer_id:
            raise InvalidRequestError("Client and freelancer must be different accounts")
        if actor.role != ActorRole.CLIENT or actor.user_id != client_id:
            raise UnauthorizedError(f"{actor.user_id} cannot open an escrow on behalf of {client_id}")

        for _ in range(self._config.max_conflict_retries):
            now = self._clock()
            record = EscrowRecord(
                id=new_record_id(),
                client_id=client_id,
                freelancer_id=freelancer_id,
                service_id=service_id,
                amount=amount,
                terms=terms,
                created_at=now,
                auto_release_at=now + self.hold_window,
            )
            event = self._event(record, EscrowEventType.CREATED, None, actor, now)
            try:
                self._store.insert_escrow(record, event)
            except ConcurrentModificationError:
                logger.debug("escrow insert for %s lost a race; retrying", client_id)
                continue

            logger.info(
                "escrow %s created: client=%s freelancer=%s amount=%s",
                record.id, client_id, freelancer_id, amount,
            )
            self._notify_parties(record, "escrow_created", {
                "message": f"{amount} hours placed in escrow for service {service_id}",
            })
            return record

        raise StoreUnavailableError(
            f"Escrow creation for {client_id} kept conflicting; giving up after "
            f"{self._config.max_conflict_retries} attempts"
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def release(
        self,
        record_id: str,
        actor: Actor,
        *,
        note: str | None = None,
        notify: bool = True,
    ) -> TransitionResult:
        """Credit the freelancer and mark the record released.

        Already released: success with ``applied=False``. Already refunded:
        InvalidTransitionError.
        """
        return self._settle(record_id, EscrowStatus.RELEASED, actor, note=note, notify=notify)

    def refund(
        self,
        record_id: str,
        actor: Actor,
        *,
        note: str | None = None,
        notify: bool = True,
    ) -> TransitionResult:
        """Credit the client and mark the record refunded. Mirrors ``release``."""
        return self._settle(record_id, EscrowStatus.REFUNDED, actor, note=note, notify=notify)

    def _settle(
        self,
        record_id: str,
        target: EscrowStatus,
        actor: Actor,
        *,
        note: str | None,
        notify: bool,
    ) -> TransitionResult:
        action = _ACTIONS[target]
        for _ in range(self._config.max_conflict_retries):
            record = self.get_status(record_id)
            self._authorize_settlement(record, target, actor)

            if record.is_terminal:
                if record.status == target:
                    logger.info("escrow %s already %s; %s by %s is a no-op",
                                record.id, record.status, action, actor.role)
                    return TransitionResult(record=record, applied=False)
                raise InvalidTransitionError(record.id, record.status, action,
                                             "record already settled")

            self._check_settlement_state(record, target, actor)

            now = self._clock()
            updated = record.model_copy(update={
                "status": target,
                "resolved_at": now,
                "resolved_by": actor.user_id,
                "resolution_note": note,
                "version": record.version + 1,
            })
            event = self._event(updated, _SETTLEMENT_EVENTS[target], record.status, actor, now, note)
            recipient = record.recipient_for(target)
            try:
                self._store.commit_transition(record, updated, event, credit_account=recipient)
            except ConcurrentModificationError:
                logger.debug("escrow %s changed during %s; re-reading", record.id, action)
                continue

            logger.info("escrow %s %s by %s:%s; credited %s to %s",
                        record.id, target, actor.role, actor.user_id, record.amount, recipient)
            if notify:
                self._notify_parties(updated, f"escrow_{target}", {
                    "message": f"{record.amount} hours {target} to {recipient}",
                    "note": note or "",
                })
            return TransitionResult(record=updated, applied=True)

        raise StoreUnavailableError(
            f"Escrow {record_id} kept changing during {action}; giving up after "
            f"{self._config.max_conflict_retries} attempts"
        )

    def _authorize_settlement(self, record: EscrowRecord, target: EscrowStatus, actor: Actor) -> None:
        """Role and party checks that do not depend on the record's state."""
        role = actor.role
        if role == ActorRole.ADMIN:
            return
        if role == ActorRole.SYSTEM:
            if target == EscrowStatus.RELEASED:
                return
            raise UnauthorizedError("The scheduler may only release escrows")
        if role == ActorRole.CLIENT and actor.user_id == record.client_id:
            return
        if (role == ActorRole.FREELANCER and actor.user_id == record.freelancer_id
                and target == EscrowStatus.REFUNDED):
            return
        raise UnauthorizedError(
            f"{role}:{actor.user_id} may not {_ACTIONS[target]} escrow {record.id}"
        )

    def _check_settlement_state(self, record: EscrowRecord, target: EscrowStatus, actor: Actor) -> None:
        """State-dependent rules for an open record."""
        action = _ACTIONS[target]
        if record.status == EscrowStatus.DISPUTED and actor.role != ActorRole.ADMIN:
            raise InvalidTransitionError(record.id, record.status, action,
                                         "disputed escrows are settled by an administrator")
        if actor.role == ActorRole.SYSTEM and not record.is_due(self._clock()):
            raise InvalidTransitionError(record.id, record.status, action,
                                         f"hold window runs until {record.auto_release_at.isoformat()}")
        if (actor.role == ActorRole.CLIENT and target == EscrowStatus.REFUNDED
                and record.accepted_at is not None):
            raise UnauthorizedError(
                f"Escrow {record.id} was accepted by the freelancer; "
                "the client can no longer refund it"
            )

    # ------------------------------------------------------------------
    # Non-settling transitions
    # ------------------------------------------------------------------

    def accept(self, record_id: str, actor: Actor) -> EscrowRecord:
        """Freelancer accepts the work; the client loses the right to self-refund."""
        for _ in range(self._config.max_conflict_retries):
            record = self.get_status(record_id)
            if actor.role != ActorRole.FREELANCER or actor.user_id != record.freelancer_id:
                raise UnauthorizedError(f"Only the freelancer can accept escrow {record.id}")
            if record.status != EscrowStatus.HELD:
                raise InvalidTransitionError(record.id, record.status, "accept")
            if record.accepted_at is not None:
                return record

            now = self._clock()
            updated = record.model_copy(update={"accepted_at": now, "version": record.version + 1})
            event = self._event(updated, EscrowEventType.ACCEPTED, record.status, actor, now)
            try:
                self._store.commit_transition(record, updated, event)
            except ConcurrentModificationError:
                logger.debug("escrow %s changed during accept; re-reading", record.id)
                continue

            logger.info("escrow %s accepted by %s", record.id, actor.user_id)
            self._notifications_safe(record.client_id, "escrow_accepted", updated, {
                "message": "The freelancer accepted the escrowed work",
            })
            return updated

        raise StoreUnavailableError(f"Escrow {record_id} kept changing during accept")

    def open_dispute(self, record_id: str, reason: str, actor: Actor) -> EscrowRecord:
        """Freeze a held record pending an admin decision. Moves no balance."""
        if not reason or not reason.strip():
            raise InvalidRequestError("A dispute needs a reason")
        for _ in range(self._config.max_conflict_retries):
            record = self.get_status(record_id)
            if actor.role != ActorRole.ADMIN and actor.user_id not in record.parties():
                raise UnauthorizedError(f"{actor.user_id} is not a party to escrow {record.id}")
            if record.status != EscrowStatus.HELD:
                raise InvalidTransitionError(record.id, record.status, "dispute")

            now = self._clock()
            updated = record.model_copy(update={
                "status": EscrowStatus.DISPUTED,
                "disputed_at": now,
                "disputed_by": actor.user_id,
                "dispute_reason": reason.strip(),
                "version": record.version + 1,
            })
            event = self._event(updated, EscrowEventType.DISPUTED, record.status, actor, now, reason.strip())
            try:
                self._store.commit_transition(record, updated, event)
            except ConcurrentModificationError:
                logger.debug("escrow %s changed during dispute; re-reading", record.id)
                continue

            logger.info("escrow %s disputed by %s: %s", record.id, actor.user_id, reason)
            self._notify_parties(updated, "escrow_disputed", {
                "message": "A dispute was opened; auto-release is suspended",
                "reason": updated.dispute_reason,
            })
            return updated

        raise StoreUnavailableError(f"Escrow {record_id} kept changing during dispute")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, record_id: str) -> EscrowRecord:
        record = self._store.get_record(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def seconds_until_release(self, record: EscrowRecord) -> int | None:
        """Countdown to auto-release; None once the record is no longer held."""
        if record.status != EscrowStatus.HELD:
            return None
        return int(record.time_remaining(self._clock()).total_seconds())

    def get_timeline(self, record_id: str) -> list[EscrowEvent]:
        self.get_status(record_id)
        return self._store.list_events(record_id)

    def get_balance(self, account_id: str) -> Decimal:
        return self._store.get_balance(account_id)

    def list_due(self, now: datetime | None = None, limit: int = 100) -> list[EscrowRecord]:
        return self._store.list_due(now or self._clock(), limit)

    def list_open(self) -> list[EscrowRecord]:
        return self._store.list_open()

    def summary(self) -> EscrowSummary:
        summary = EscrowSummary()
        for record in self._store.list_open():
            if record.status == EscrowStatus.HELD:
                summary.held_count += 1
                summary.held_amount += record.amount
            else:
                summary.disputed_count += 1
                summary.disputed_amount += record.amount
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _event(
        record: EscrowRecord,
        event_type: EscrowEventType,
        from_status: EscrowStatus | None,
        actor: Actor,
        at: datetime,
        note: str | None = None,
    ) -> EscrowEvent:
        return EscrowEvent(
            record_id=record.id,
            sequence=record.version,
            event_type=event_type,
            from_status=from_status,
            to_status=record.status,
            actor_id=actor.user_id,
            actor_role=actor.role,
            occurred_at=at,
            note=note or "",
        )

    def _notify_parties(self, record: EscrowRecord, event_type: str, extra: JsonDict) -> None:
        for user_id in record.parties():
            self._notifications_safe(user_id, event_type, record, extra)

    def _notifications_safe(
        self, user_id: str, event_type: str, record: EscrowRecord, extra: JsonDict
    ) -> None:
        """Notify without letting a sink failure undo a committed transition."""
        payload = {
            "record_id": record.id,
            "status": record.status.value,
            "amount": str(record.amount),
            "service_id": record.service_id,
            **extra,
        }
        try:
            self._notifications.notify(user_id, event_type, payload)
        except Exception:
            logger.exception("notification %s for escrow %s to %s failed",
                             event_type, record.id, user_id)
