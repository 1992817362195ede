"""Admin endpoints for escrow oversight and dispute resolution."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from hourbank.api.dependencies import get_actor, get_ledger, get_resolver, get_scheduler
from hourbank.core.exceptions import UnauthorizedError
from hourbank.escrow.disputes import DisputeResolver
from hourbank.escrow.ledger import EscrowLedger
from hourbank.escrow.scheduler import AutoReleaseScheduler, TickReport
from hourbank.models.escrow import Actor, ActorRole, DisputeDecision, EscrowRecord, TransitionResult

router = APIRouter(tags=["admin"])


class ResolveRequest(BaseModel):
    decision: DisputeDecision
    note: str


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.ADMIN:
        raise UnauthorizedError(f"{actor.user_id} is not an administrator")
    return actor


@router.get("/escrows")
def list_active_escrows(
    _: Actor = Depends(require_admin),
    ledger: EscrowLedger = Depends(get_ledger),
) -> list[EscrowRecord]:
    """Held and disputed escrows, newest first."""
    return ledger.list_open()


@router.get("/stats")
def escrow_stats(
    _: Actor = Depends(require_admin),
    ledger: EscrowLedger = Depends(get_ledger),
) -> dict:
    summary = ledger.summary()
    return {
        "active_escrows": summary.held_count,
        "disputes_open": summary.disputed_count,
        "held_amount": str(summary.held_amount),
        "disputed_amount": str(summary.disputed_amount),
        "open_amount": str(summary.open_amount),
    }


@router.post("/escrows/{record_id}/resolve")
def resolve_dispute(
    record_id: str,
    body: ResolveRequest,
    actor: Actor = Depends(require_admin),
    resolver: DisputeResolver = Depends(get_resolver),
) -> TransitionResult:
    return resolver.resolve(record_id, body.decision, body.note, actor)


@router.post("/scheduler/tick")
def run_scheduler_tick(
    _: Actor = Depends(require_admin),
    scheduler: AutoReleaseScheduler = Depends(get_scheduler),
) -> TickReport:
    """Run one auto-release pass immediately."""
    return scheduler.tick()
