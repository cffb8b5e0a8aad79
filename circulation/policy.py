"""Fine policy: the rate table used to price late, damaged and lost books.

The policy row is owned by an administrator; the circulation core only reads
it. It is re-read on every settlement so edits take effect immediately.
"""

from __future__ import annotations

import logging
import sqlite3
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from circulation.errors import PolicyIntegrityError
from circulation.models import DamageLevel

logger = logging.getLogger(__name__)


class FinePolicy(BaseModel):
    """Rates applied by the fine calculator. Defaults match an unset policy."""

    model_config = ConfigDict(frozen=True)

    daily_rate: Decimal = Field(default=Decimal("50"), ge=0, description="Fine per overdue day")
    lost_multiplier: Decimal = Field(default=Decimal("2.0"), ge=0, description="Lost fine as a multiple of the book price")
    small_damage_pct: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    large_damage_pct: Decimal = Field(default=Decimal("0.50"), ge=0, le=1)
    overdue_threshold_days: int = Field(default=30, ge=0, description="Days overdue after which a return counts as lost")

    def damage_percentage(self, level: DamageLevel) -> Decimal:
        if level is DamageLevel.SMALL:
            return self.small_damage_pct
        if level is DamageLevel.LARGE:
            return self.large_damage_pct
        return Decimal("0")


class FinePolicyStore:
    """Reads and replaces the single ``fine_config`` row."""

    def load(self, conn: sqlite3.Connection) -> FinePolicy:
        row = conn.execute(
            """
            SELECT daily_rate, lost_multiplier, small_damage_pct,
                   large_damage_pct, overdue_threshold_days
            FROM fine_config WHERE id = 1
            """
        ).fetchone()
        if row is None:
            return FinePolicy()
        try:
            return FinePolicy(**dict(row))
        except ValidationError as e:
            logger.error(f"Stored fine policy is out of bounds: {e.errors()}")
            raise PolicyIntegrityError("The stored fine policy is invalid; reset or update it") from e

    def save(self, conn: sqlite3.Connection, policy: FinePolicy) -> FinePolicy:
        conn.execute(
            """
            INSERT INTO fine_config (
                id, daily_rate, lost_multiplier, small_damage_pct,
                large_damage_pct, overdue_threshold_days, updated_at
            ) VALUES (1, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
                daily_rate = excluded.daily_rate,
                lost_multiplier = excluded.lost_multiplier,
                small_damage_pct = excluded.small_damage_pct,
                large_damage_pct = excluded.large_damage_pct,
                overdue_threshold_days = excluded.overdue_threshold_days,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                str(policy.daily_rate),
                str(policy.lost_multiplier),
                str(policy.small_damage_pct),
                str(policy.large_damage_pct),
                policy.overdue_threshold_days,
            ),
        )
        logger.info(f"Fine policy updated: {policy.model_dump(mode='json')}")
        return policy

    def reset(self, conn: sqlite3.Connection) -> FinePolicy:
        """Drop the stored row so the defaults apply again."""
        conn.execute("DELETE FROM fine_config WHERE id = 1")
        logger.info("Fine policy reset to defaults")
        return FinePolicy()
