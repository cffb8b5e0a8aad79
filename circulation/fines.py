"""Fine calculation.

Pure functions over a loan snapshot and a :class:`FinePolicy`; nothing here
touches the database or the clock. All money is ``Decimal`` rounded half-up
to cents.

Rules:

- Late return: ``daily_rate`` per started day past the due date.
- Returned more than ``overdue_threshold_days`` late: the book counts as
  lost and ``lost_multiplier`` x price is charged *in addition to* the
  overdue fine. The damage fine is waived in that case.
- Damage on an otherwise normal return: ``small_damage_pct`` or
  ``large_damage_pct`` of the price.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from circulation.models import DamageLevel
from circulation.policy import FinePolicy

CENT = Decimal("0.01")
ONE_DAY = timedelta(days=1)
ZERO = Decimal("0.00")


def to_money(value: Union[Decimal, int, str]) -> Decimal:
    """Coerce to a cent-rounded Decimal. Floats are refused."""
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats; pass a Decimal or a string")
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def overdue_days_between(due_date: datetime, returned_at: datetime) -> int:
    """Whole days late, counting any started day; 0 when on time."""
    late_by = returned_at - due_date
    if late_by <= timedelta(0):
        return 0
    # Ceiling division on timedelta keeps microsecond precision.
    return -((-late_by) // ONE_DAY)


@dataclass(frozen=True)
class FineBreakdown:
    overdue_days: int
    overdue_fine: Decimal
    damage_fine: Decimal
    lost_fine: Decimal
    total_fine: Decimal
    is_lost: bool
    is_overdue: bool

    @property
    def item_fine(self) -> Decimal:
        """The part attributed to the physical item (damage or loss)."""
        return self.damage_fine + self.lost_fine


def calculate_fine(
    book_price: Decimal,
    due_date: datetime,
    returned_at: datetime,
    damage_level: DamageLevel,
    policy: FinePolicy,
) -> FineBreakdown:
    price = to_money(book_price)
    is_overdue = returned_at > due_date
    overdue_days = overdue_days_between(due_date, returned_at) if is_overdue else 0
    is_lost = overdue_days > policy.overdue_threshold_days

    overdue_fine = to_money(overdue_days * policy.daily_rate) if is_overdue else ZERO

    if is_lost:
        lost_fine = to_money(price * policy.lost_multiplier)
        damage_fine = ZERO
    else:
        lost_fine = ZERO
        damage_fine = to_money(price * policy.damage_percentage(damage_level))

    return FineBreakdown(
        overdue_days=overdue_days,
        overdue_fine=overdue_fine,
        damage_fine=damage_fine,
        lost_fine=lost_fine,
        total_fine=to_money(overdue_fine + damage_fine + lost_fine),
        is_lost=is_lost,
        is_overdue=is_overdue,
    )


def lost_report_fine(book_price: Decimal, policy: FinePolicy) -> Decimal:
    """Fine for a book reported lost before it was ever returned."""
    return to_money(to_money(book_price) * policy.lost_multiplier)
