"""Hourbank exception hierarchy.

Every caller-facing failure carries a stable ``code`` so the API layer and the
scheduler can report it without string matching.
"""

from __future__ import annotations

from decimal import Decimal


class HourbankError(Exception):
    """Base exception for all Hourbank errors."""

    code = "HourbankError"


class InvalidRequestError(HourbankError):
    """Malformed escrow request (non-positive amount, self-escrow, empty reason)."""

    code = "InvalidRequest"


class InsufficientFundsError(HourbankError):
    """Client balance is below the requested escrow amount."""

    code = "InsufficientFunds"

    def __init__(self, account_id: str, balance: Decimal, amount: Decimal) -> None:
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient balance for {account_id}: has {balance}, needs {amount}"
        )


class RecordNotFoundError(HourbankError):
    """No escrow record with the given id."""

    code = "RecordNotFound"

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Escrow record {record_id} not found")


class InvalidTransitionError(HourbankError):
    """Requested action is not legal from the record's current state."""

    code = "InvalidTransition"

    def __init__(self, record_id: str, status: str, action: str, reason: str = "") -> None:
        self.record_id = record_id
        self.status = status
        self.action = action
        message = f"Cannot {action} escrow {record_id} in status {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnauthorizedError(HourbankError):
    """Acting party lacks permission for the requested transition."""

    code = "Unauthorized"


class StoreUnavailableError(HourbankError):
    """The atomic store transaction could not be committed. Safe to retry."""

    code = "StoreUnavailable"


class ConcurrentModificationError(HourbankError):
    """A conditional write lost a race against another writer."""

    code = "ConcurrentModification"

    def __init__(self, record_id: str, expected_version: int) -> None:
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"Escrow {record_id} changed since version {expected_version}"
        )


class NotificationError(HourbankError):
    """Notification sink failed to accept a message."""

    code = "NotificationError"
