from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from circulation.fines import calculate_fine, lost_report_fine, overdue_days_between, to_money
from circulation.models import DamageLevel
from circulation.policy import FinePolicy

DUE = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)
POLICY = FinePolicy()


def test_on_time_return_has_no_fine():
    fine = calculate_fine(Decimal("1000"), DUE, DUE - timedelta(days=9), DamageLevel.NONE, POLICY)
    assert fine.overdue_days == 0
    assert fine.total_fine == Decimal("0.00")
    assert not fine.is_overdue
    assert not fine.is_lost


def test_return_exactly_at_due_date_is_on_time():
    fine = calculate_fine(Decimal("1000"), DUE, DUE, DamageLevel.NONE, POLICY)
    assert not fine.is_overdue
    assert fine.total_fine == Decimal("0.00")


def test_overdue_not_lost():
    fine = calculate_fine(Decimal("1000"), DUE, DUE + timedelta(days=10), DamageLevel.NONE, POLICY)
    assert fine.overdue_days == 10
    assert fine.overdue_fine == Decimal("500.00")
    assert fine.total_fine == Decimal("500.00")
    assert fine.is_overdue
    assert not fine.is_lost


def test_lost_by_lateness_charges_overdue_and_lost():
    fine = calculate_fine(Decimal("1000"), DUE, DUE + timedelta(days=35), DamageLevel.SMALL, POLICY)
    assert fine.is_lost
    assert fine.overdue_fine == Decimal("1750.00")
    assert fine.lost_fine == Decimal("2000.00")
    assert fine.damage_fine == Decimal("0.00")
    assert fine.total_fine == Decimal("3750.00")
    assert fine.item_fine == Decimal("2000.00")


def test_threshold_day_itself_is_not_lost():
    fine = calculate_fine(Decimal("1000"), DUE, DUE + timedelta(days=30), DamageLevel.NONE, POLICY)
    assert fine.overdue_days == 30
    assert not fine.is_lost
    fine = calculate_fine(Decimal("1000"), DUE, DUE + timedelta(days=30, seconds=1), DamageLevel.NONE, POLICY)
    assert fine.overdue_days == 31
    assert fine.is_lost


def test_partial_day_counts_as_a_full_day():
    fine = calculate_fine(Decimal("1000"), DUE, DUE + timedelta(hours=1), DamageLevel.NONE, POLICY)
    assert fine.overdue_days == 1
    assert fine.overdue_fine == Decimal("50.00")


@pytest.mark.parametrize(
    "level, expected",
    [
        (DamageLevel.NONE, Decimal("0.00")),
        (DamageLevel.SMALL, Decimal("100.00")),
        (DamageLevel.LARGE, Decimal("500.00")),
    ],
)
def test_damage_only(level, expected):
    fine = calculate_fine(Decimal("1000"), DUE, DUE - timedelta(days=1), level, POLICY)
    assert fine.damage_fine == expected
    assert fine.total_fine == expected
    assert fine.item_fine == expected


def test_overdue_and_damaged_adds_both():
    fine = calculate_fine(Decimal("200"), DUE, DUE + timedelta(days=2), DamageLevel.LARGE, POLICY)
    assert fine.overdue_fine == Decimal("100.00")
    assert fine.damage_fine == Decimal("100.00")
    assert fine.total_fine == Decimal("200.00")


def test_rounding_is_half_up_to_cents():
    policy = FinePolicy(small_damage_pct=Decimal("0.10"))
    fine = calculate_fine(Decimal("15.95"), DUE, DUE, DamageLevel.SMALL, policy)
    # 1.595 rounds up
    assert fine.damage_fine == Decimal("1.60")


def test_custom_policy_is_applied():
    policy = FinePolicy(daily_rate=Decimal("12.5"), overdue_threshold_days=5, lost_multiplier=Decimal("3"))
    fine = calculate_fine(Decimal("20"), DUE, DUE + timedelta(days=6), DamageLevel.NONE, policy)
    assert fine.is_lost
    assert fine.overdue_fine == Decimal("75.00")
    assert fine.lost_fine == Decimal("60.00")
    assert fine.total_fine == Decimal("135.00")


def test_lost_report_fine():
    assert lost_report_fine(Decimal("45.99"), POLICY) == Decimal("91.98")


def test_overdue_days_between():
    assert overdue_days_between(DUE, DUE - timedelta(days=3)) == 0
    assert overdue_days_between(DUE, DUE + timedelta(days=3)) == 3
    assert overdue_days_between(DUE, DUE + timedelta(days=3, microseconds=1)) == 4


def test_to_money_refuses_floats():
    with pytest.raises(TypeError):
        to_money(0.1)
    assert to_money("2.005") == Decimal("2.01")
    assert to_money(3) == Decimal("3.00")
