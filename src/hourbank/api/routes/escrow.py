"""Escrow endpoints for clients and freelancers."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from hourbank.api.dependencies import get_actor, get_ledger
from hourbank.escrow.ledger import EscrowLedger
from hourbank.models.escrow import Actor, EscrowEvent, EscrowRecord, TransitionResult

router = APIRouter(tags=["escrow"])


class CreateEscrowRequest(BaseModel):
    freelancer_id: str
    service_id: str
    amount: Decimal
    terms: str = ""


class SettleRequest(BaseModel):
    note: Optional[str] = None


class DisputeRequest(BaseModel):
    reason: str


class EscrowStatusView(EscrowRecord):
    """Record plus the auto-release countdown shown on the escrow page."""

    seconds_until_release: Optional[int] = None


@router.post("/escrows", status_code=201)
def create_escrow(
    body: CreateEscrowRequest,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_ledger),
) -> EscrowRecord:
    return ledger.create_escrow(
        actor,
        client_id=actor.user_id,
        freelancer_id=body.freelancer_id,
        service_id=body.service_id,
        amount=body.amount,
        terms=body.terms,
    )


@router.get("/escrows/{record_id}")
def get_escrow(record_id: str, ledger: EscrowLedger = Depends(get_ledger)) -> EscrowStatusView:
    record = ledger.get_status(record_id)
    return EscrowStatusView(
        **record.model_dump(), seconds_until_release=ledger.seconds_until_release(record),
    )


@router.get("/escrows/{record_id}/timeline")
def get_timeline(record_id: str, ledger: EscrowLedger = Depends(get_ledger)) -> list[EscrowEvent]:
    return ledger.get_timeline(record_id)


@router.post("/escrows/{record_id}/accept")
def accept_escrow(
    record_id: str,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_ledger),
) -> EscrowRecord:
    return ledger.accept(record_id, actor)


@router.post("/escrows/{record_id}/release")
def release_escrow(
    record_id: str,
    body: SettleRequest | None = None,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_ledger),
) -> TransitionResult:
    return ledger.release(record_id, actor, note=body.note if body else None)


@router.post("/escrows/{record_id}/refund")
def refund_escrow(
    record_id: str,
    body: SettleRequest | None = None,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_ledger),
) -> TransitionResult:
    return ledger.refund(record_id, actor, note=body.note if body else None)


@router.post("/escrows/{record_id}/dispute")
def open_dispute(
    record_id: str,
    body: DisputeRequest,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_ledger),
) -> EscrowRecord:
    return ledger.open_dispute(record_id, body.reason, actor)


@router.get("/accounts/{user_id}/balance")
def get_balance(user_id: str, ledger: EscrowLedger = Depends(get_ledger)) -> dict[str, str]:
    return {"user_id": user_id, "balance": str(ledger.get_balance(user_id))}
