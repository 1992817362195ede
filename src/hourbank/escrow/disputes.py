"""DisputeResolver: applies an administrator's decision to a disputed escrow."""

from __future__ import annotations

import logging

from hourbank.core.exceptions import InvalidTransitionError, UnauthorizedError
from hourbank.core.protocols import INotificationSink
from hourbank.escrow.ledger import EscrowLedger
from hourbank.models.escrow import (
    Actor,
    ActorRole,
    DisputeDecision,
    EscrowStatus,
    TransitionResult,
)

logger = logging.getLogger(__name__)


class DisputeResolver:
    """Settles disputed escrows through the ledger and tells both parties why.

    The resolution note is written in the same commit as the settlement, so
    the audit trail never shows an outcome without its reason.
    """

    def __init__(self, ledger: EscrowLedger, notifications: INotificationSink) -> None:
        self._ledger = ledger
        self._notifications = notifications

    def resolve(
        self,
        record_id: str,
        decision: DisputeDecision,
        resolution_note: str,
        actor: Actor,
    ) -> TransitionResult:
        if actor.role != ActorRole.ADMIN:
            raise UnauthorizedError(f"{actor.user_id} is not allowed to resolve disputes")

        record = self._ledger.get_status(record_id)
        if record.status != EscrowStatus.DISPUTED:
            raise InvalidTransitionError(record.id, record.status, "resolve",
                                         "only disputed escrows can be resolved")

        if decision == DisputeDecision.RELEASE:
            result = self._ledger.release(record_id, actor, note=resolution_note, notify=False)
        else:
            result = self._ledger.refund(record_id, actor, note=resolution_note, notify=False)

        logger.info("dispute on escrow %s resolved by %s: %s (%s)",
                    record_id, actor.user_id, decision, resolution_note)
        if result.applied:
            self._notify_outcome(result, decision, resolution_note)
        return result

    def _notify_outcome(self, result: TransitionResult, decision: DisputeDecision, note: str) -> None:
        record = result.record
        messages = {
            record.disputed_by: f"Your dispute has been resolved. Resolution: {note}",
        }
        for user_id in record.parties():
            message = messages.get(
                user_id, f"A dispute against you has been resolved. Resolution: {note}"
            )
            payload = {
                "record_id": record.id,
                "decision": decision.value,
                "status": record.status.value,
                "amount": str(record.amount),
                "note": note,
                "message": message,
                "priority": "high",
            }
            try:
                self._notifications.notify(user_id, "dispute_resolved", payload)
            except Exception:
                logger.exception("dispute_resolved notification for escrow %s to %s failed",
                                 record.id, user_id)
