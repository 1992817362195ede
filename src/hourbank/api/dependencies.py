"""Request-scoped dependencies: acting user and engine services."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from hourbank.escrow.disputes import DisputeResolver
from hourbank.escrow.ledger import EscrowLedger
from hourbank.escrow.scheduler import AutoReleaseScheduler
from hourbank.models.escrow import Actor, ActorRole


def get_actor(
    x_user_id: str = Header(...),
    x_user_role: str = Header(...),
) -> Actor:
    """Acting user as asserted by the upstream authentication layer."""
    try:
        role = ActorRole(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role {x_user_role!r}")
    if role == ActorRole.SYSTEM:
        raise HTTPException(status_code=403, detail="The system role is internal")
    return Actor(user_id=x_user_id, role=role)


def get_ledger(request: Request) -> EscrowLedger:
    return request.app.state.ledger


def get_resolver(request: Request) -> DisputeResolver:
    return request.app.state.resolver


def get_scheduler(request: Request) -> AutoReleaseScheduler:
    return request.app.state.scheduler
