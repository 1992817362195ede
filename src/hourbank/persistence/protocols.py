"""Re-export persistence protocols from core for convenience."""

from __future__ import annotations

from hourbank.core.protocols import IEscrowStore, INotificationSink

__all__ = ["IEscrowStore", "INotificationSink"]
