from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from circulation.models import BorrowType, DamageLevel, Loan, LoanStatus
from circulation.policy import FinePolicy


class ParticipantModel(BaseModel):
    participant_id: str
    email: str
    full_name: str


class BorrowReceipt(BaseModel):
    """Returned by a successful borrow."""
    loan_id: str
    book_id: str
    book_title: str
    borrow_type: BorrowType
    due_date: datetime
    participants: List[ParticipantModel]


class ReturnReceipt(BaseModel):
    """Fine breakdown and final status of a settled return."""
    loan_id: str
    return_date: datetime
    overdue_days: int
    overdue_fine: Decimal
    damage_fine: Decimal
    lost_fine: Decimal
    total_fine: Decimal
    is_overdue: bool
    is_lost: bool
    damage_level: DamageLevel
    final_status: LoanStatus


class LostReport(BaseModel):
    loan_id: str
    lost_fine: Decimal
    book_price: Decimal
    multiplier: Decimal


class LoanSummary(BaseModel):
    loan_id: str
    book_id: Optional[str] = None
    book_title: Optional[str] = None
    borrow_type: BorrowType
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: LoanStatus
    total_fine: Decimal
    damage_level: DamageLevel = DamageLevel.NONE
    participant_ids: List[str] = Field(default_factory=list)
    participants: List[ParticipantModel] = Field(default_factory=list)

    @classmethod
    def from_loan(cls, loan: Loan) -> "LoanSummary":
        return cls(
            loan_id=loan.loan_id,
            book_id=loan.book_id,
            book_title=loan.book_title,
            borrow_type=loan.borrow_type,
            borrowed_at=loan.borrowed_at,
            due_date=loan.due_date,
            returned_at=loan.returned_at,
            status=loan.status,
            total_fine=loan.total_fine,
            damage_level=loan.item.damage_level if loan.item else DamageLevel.NONE,
            participant_ids=list(loan.participant_ids),
            participants=[
                ParticipantModel(**p.to_dict())
                for p in loan.participants
            ],
        )


class FineSummary(BaseModel):
    """A participant's fined loans and what they add up to."""
    participant_id: str
    loans: List[LoanSummary]
    total_fine: Decimal
    policy: FinePolicy


class InventorySnapshot(BaseModel):
    book_id: str
    total_copies: int
    available_copies: int
    active_loans: int
    lost_copies: int
