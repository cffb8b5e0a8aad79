"""Errors raised by the circulation core.

``CirculationError`` subclasses are business refusals: the request was
understood and rejected, nothing was written, and the caller can act on the
``kind``. ``CirculationFault`` subclasses are internal failures (store
unavailable, broken counters) that the caller may retry or escalate.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CirculationError(Exception):
    kind = "circulation_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class OutOfStockError(CirculationError):
    kind = "out_of_stock"


class AlreadyBorrowingError(CirculationError):
    """One or more participants already hold an active loan.

    ``holders`` lists ``{"participant_id", "email", "full_name", "book_title"}``.
    """

    kind = "already_borrowing"

    def __init__(self, message: str, holders: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.holders = holders or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["holders"] = self.holders
        return payload


class UnknownParticipantError(CirculationError):
    kind = "unknown_participant"

    def __init__(self, message: str, identifiers: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.identifiers = identifiers or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["identifiers"] = self.identifiers
        return payload


class InvalidDueDateError(CirculationError):
    kind = "invalid_due_date"


class InvalidRequestError(CirculationError):
    kind = "invalid_request"


class NotFoundError(CirculationError):
    kind = "not_found"


class NotActiveError(CirculationError):
    kind = "not_active"


class ConflictError(CirculationError):
    kind = "conflict"


class CirculationFault(Exception):
    """Internal failure, distinct from the business refusals above."""

    kind = "internal_fault"


class StoreUnavailableError(CirculationFault):
    kind = "store_unavailable"


class InventoryIntegrityError(CirculationFault):
    kind = "inventory_integrity"


class PolicyIntegrityError(CirculationFault):
    kind = "policy_integrity"
