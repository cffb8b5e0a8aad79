"""Library circulation desk: borrowing, returns, loss reports and fines."""

from circulation.errors import CirculationError, CirculationFault
from circulation.library import Library
from circulation.models import BorrowType, DamageLevel, LoanStatus
from circulation.policy import FinePolicy

__all__ = [
    "CirculationError",
    "CirculationFault",
    "Library",
    "BorrowType",
    "DamageLevel",
    "LoanStatus",
    "FinePolicy",
]
