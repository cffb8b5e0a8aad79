from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class BorrowType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    GROUP = "GROUP"


class DamageLevel(str, Enum):
    NONE = "NONE"
    SMALL = "SMALL"
    LARGE = "LARGE"


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"
    LOST = "LOST"

    @property
    def is_terminal(self) -> bool:
        return self is not LoanStatus.ACTIVE

    @property
    def book_back_in_stock(self) -> bool:
        """RETURNED and OVERDUE both mean the copy is back on the shelf."""
        return self in (LoanStatus.RETURNED, LoanStatus.OVERDUE)

    def can_transition_to(self, target: "LoanStatus") -> bool:
        return target in _TRANSITIONS[self]


# Terminal states are sinks.
_TRANSITIONS = {
    LoanStatus.ACTIVE: frozenset({LoanStatus.RETURNED, LoanStatus.OVERDUE, LoanStatus.LOST}),
    LoanStatus.RETURNED: frozenset(),
    LoanStatus.OVERDUE: frozenset(),
    LoanStatus.LOST: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialise an aware datetime for storage (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Participant:
    """A borrower as seen through the identity provider."""

    participant_id: str
    email: str
    full_name: str
    role: str = "STUDENT"
    is_verified: bool = False
    is_deleted: bool = False

    @property
    def can_borrow(self) -> bool:
        return self.role == "STUDENT" and self.is_verified and not self.is_deleted

    def to_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "email": self.email,
            "full_name": self.full_name,
        }

    @staticmethod
    def from_row(row) -> "Participant":
        data = dict(row)
        return Participant(
            participant_id=data["id"],
            email=data["email"],
            full_name=data["full_name"],
            role=data.get("role") or "STUDENT",
            is_verified=bool(data.get("is_verified")),
            is_deleted=bool(data.get("is_deleted")),
        )


@dataclass
class BookStock:
    """The slice of a catalog book this core reads: price and copy counters."""

    book_id: str
    title: str
    price: Decimal
    total_copies: int
    available_copies: int
    isbn: str = ""
    is_deleted: bool = False

    @property
    def in_stock(self) -> bool:
        return self.available_copies > 0

    @staticmethod
    def from_row(row) -> "BookStock":
        data = dict(row)
        return BookStock(
            book_id=data["id"],
            title=data["title"],
            price=Decimal(data["price"]),
            total_copies=int(data["total_copies"]),
            available_copies=int(data["available_copies"]),
            isbn=data.get("isbn") or "",
            is_deleted=bool(data.get("is_deleted")),
        )


@dataclass
class LoanedItem:
    item_id: str
    loan_id: str
    book_id: str
    returned: bool = False
    damage_level: DamageLevel = DamageLevel.NONE
    damage_notes: Optional[str] = None
    damage_fine: Decimal = Decimal("0")

    @staticmethod
    def from_row(row) -> "LoanedItem":
        data = dict(row)
        return LoanedItem(
            item_id=data["id"],
            loan_id=data["loan_id"],
            book_id=data["book_id"],
            returned=bool(data["returned"]),
            damage_level=DamageLevel(data["damage_level"]),
            damage_notes=data.get("damage_notes"),
            damage_fine=Decimal(data["damage_fine"]),
        )


@dataclass
class Loan:
    """A borrowing of one book by one or more participants."""

    loan_id: str
    participant_ids: List[str]
    borrow_type: BorrowType
    borrowed_at: datetime
    due_date: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    returned_at: Optional[datetime] = None
    total_fine: Decimal = Decimal("0")
    item: Optional[LoanedItem] = None
    book_title: Optional[str] = None
    participants: List[Participant] = field(default_factory=list)

    @property
    def book_id(self) -> Optional[str]:
        return self.item.book_id if self.item else None

    def has_participant(self, participant_id: str) -> bool:
        return participant_id in self.participant_ids

    @staticmethod
    def from_row(row, item: Optional[LoanedItem] = None) -> "Loan":
        data = dict(row)
        participant_ids = data.get("participant_ids") or "[]"
        if isinstance(participant_ids, str):
            participant_ids = json.loads(participant_ids)
        return Loan(
            loan_id=data["id"],
            participant_ids=list(participant_ids),
            borrow_type=BorrowType(data["borrow_type"]),
            borrowed_at=from_timestamp(data["borrowed_at"]),
            due_date=from_timestamp(data["due_date"]),
            status=LoanStatus(data["status"]),
            returned_at=from_timestamp(data.get("returned_at")),
            total_fine=Decimal(data["total_fine"]),
            item=item,
            book_title=data.get("book_title"),
        )
