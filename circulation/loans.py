"""Loan lifecycle.

``ACTIVE`` is the only state with outgoing transitions::

    ACTIVE -> RETURNED   returned on time
    ACTIVE -> OVERDUE    returned late, within the lost threshold
    ACTIVE -> LOST       returned past the threshold, or reported lost

Every method takes an open connection and expects to run inside
:func:`circulation.database.transaction`; none of them commit.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from circulation.eligibility import BorrowAuthorization, active_holdings, already_borrowing
from circulation.errors import ConflictError, NotActiveError, NotFoundError
from circulation.fines import FineBreakdown, calculate_fine, lost_report_fine, to_money
from circulation.inventory import InventoryLedger
from circulation.models import (
    DamageLevel,
    Loan,
    LoanedItem,
    LoanStatus,
    Participant,
    to_timestamp,
)
from circulation.policy import FinePolicy

logger = logging.getLogger(__name__)

REPORTED_LOST_NOTE = "Book reported as lost"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ReturnSettlement:
    loan: Loan
    fine: FineBreakdown
    damage_level: DamageLevel


@dataclass(frozen=True)
class LostSettlement:
    loan: Loan
    lost_fine: Decimal
    book_price: Decimal
    multiplier: Decimal


class LoanStateMachine:
    def __init__(self, ledger: Optional[InventoryLedger] = None) -> None:
        self.ledger = ledger or InventoryLedger()

    # ------------------------- Reads ------------------------- #
    def get(self, conn: sqlite3.Connection, loan_id: str) -> Optional[Loan]:
        row = conn.execute(
            """
            SELECT l.*, b.title AS book_title
            FROM loans l
            LEFT JOIN loaned_items li ON li.loan_id = l.id
            LEFT JOIN books b ON b.id = li.book_id
            WHERE l.id = ?
            """,
            (loan_id,),
        ).fetchone()
        if row is None:
            return None
        return self._load(conn, row)

    def get_for_participant(self, conn: sqlite3.Connection, loan_id: str, participant_id: str) -> Loan:
        """Load a loan the participant belongs to; anything else reads as not found."""
        loan = self.get(conn, loan_id)
        if loan is None or not loan.has_participant(participant_id):
            raise NotFoundError("Borrowing not found or you are not a participant of it")
        return loan

    def list_for_participant(
        self,
        conn: sqlite3.Connection,
        participant_id: str,
        status: Optional[LoanStatus] = None,
    ) -> List[Loan]:
        query = """
            SELECT l.*, b.title AS book_title
            FROM loans l
            JOIN loan_participants lp ON lp.loan_id = l.id
            LEFT JOIN loaned_items li ON li.loan_id = l.id
            LEFT JOIN books b ON b.id = li.book_id
            WHERE lp.participant_id = ?
        """
        params: list = [participant_id]
        if status is not None:
            query += " AND l.status = ?"
            params.append(status.value)
        query += " ORDER BY l.borrowed_at DESC, l.id"
        rows = conn.execute(query, params).fetchall()
        return [self._load(conn, row) for row in rows]

    def count_off_shelf(self, conn: sqlite3.Connection, book_id: str) -> Tuple[int, int]:
        """Return ``(active, lost)`` loan counts for ``book_id``."""
        row = conn.execute(
            """
            SELECT
                COALESCE(SUM(CASE WHEN l.status = 'ACTIVE' THEN 1 ELSE 0 END), 0) AS active,
                COALESCE(SUM(CASE WHEN l.status = 'LOST' THEN 1 ELSE 0 END), 0) AS lost
            FROM loans l JOIN loaned_items li ON li.loan_id = l.id
            WHERE li.book_id = ?
            """,
            (book_id,),
        ).fetchone()
        return int(row["active"]), int(row["lost"])

    def _get_item(self, conn: sqlite3.Connection, loan_id: str) -> Optional[LoanedItem]:
        row = conn.execute("SELECT * FROM loaned_items WHERE loan_id = ?", (loan_id,)).fetchone()
        return LoanedItem.from_row(row) if row else None

    def _get_participants(self, conn: sqlite3.Connection, loan_id: str) -> List[Participant]:
        rows = conn.execute(
            """
            SELECT s.* FROM loan_participants lp
            JOIN students s ON s.id = lp.participant_id
            WHERE lp.loan_id = ?
            ORDER BY lp.position
            """,
            (loan_id,),
        ).fetchall()
        return [Participant.from_row(row) for row in rows]

    def _load(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Loan:
        loan = Loan.from_row(row, item=self._get_item(conn, row["id"]))
        loan.participants = self._get_participants(conn, row["id"])
        return loan

    # ------------------------- Transitions ------------------------- #
    def open(self, conn: sqlite3.Connection, auth: BorrowAuthorization, now: datetime) -> Loan:
        """Create an ACTIVE loan and take its copy off the shelf."""
        loan_id = _new_id("loan")
        participant_ids = auth.participant_ids

        conn.execute(
            """
            INSERT INTO loans (id, participant_ids, borrow_type, borrowed_at, due_date, status, total_fine)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                loan_id,
                json.dumps(participant_ids),
                auth.borrow_type.value,
                to_timestamp(now),
                to_timestamp(auth.due_date),
                LoanStatus.ACTIVE.value,
                "0",
            ),
        )
        conn.execute(
            "INSERT INTO loaned_items (id, loan_id, book_id) VALUES (?, ?, ?)",
            (_new_id("item"), loan_id, auth.book.book_id),
        )
        try:
            conn.executemany(
                "INSERT INTO loan_participants (loan_id, participant_id, position, active) VALUES (?, ?, ?, 1)",
                [(loan_id, pid, pos) for pos, pid in enumerate(participant_ids)],
            )
        except sqlite3.IntegrityError as e:
            holders = active_holdings(conn, participant_ids, exclude_loan_id=loan_id)
            raise already_borrowing(holders) from e

        if not self.ledger.decrement_if_positive(conn, auth.book.book_id):
            raise ConflictError(f'The last copy of "{auth.book.title}" was just borrowed by someone else')

        logger.info(
            f"Opened loan {loan_id} for book {auth.book.book_id} "
            f"({auth.borrow_type.value}, {len(participant_ids)} participant(s)), due {auth.due_date.isoformat()}"
        )
        return self.get(conn, loan_id)

    def settle_return(
        self,
        conn: sqlite3.Connection,
        loan: Loan,
        damage_level: DamageLevel,
        damage_notes: Optional[str],
        book_price: Decimal,
        policy: FinePolicy,
        now: datetime,
    ) -> ReturnSettlement:
        fine = calculate_fine(book_price, loan.due_date, now, damage_level, policy)
        if fine.is_lost:
            target = LoanStatus.LOST
            damage_level = DamageLevel.LARGE
            damage_notes = (
                f"Book returned {fine.overdue_days} days late and marked as lost. {damage_notes or ''}"
            ).strip()
        elif fine.is_overdue:
            target = LoanStatus.OVERDUE
        else:
            target = LoanStatus.RETURNED

        self._transition(conn, loan, target, total_fine=fine.total_fine, returned_at=now)
        conn.execute(
            """
            UPDATE loaned_items
            SET returned = 1, damage_level = ?, damage_notes = ?, damage_fine = ?
            WHERE loan_id = ?
            """,
            (damage_level.value, damage_notes, str(fine.item_fine), loan.loan_id),
        )
        if target.book_back_in_stock:
            self.ledger.increment(conn, loan.book_id)

        logger.info(
            f"Settled loan {loan.loan_id} as {target.value}: "
            f"overdue_days={fine.overdue_days} total_fine={fine.total_fine}"
        )
        return ReturnSettlement(loan=self.get(conn, loan.loan_id), fine=fine, damage_level=damage_level)

    def settle_lost(
        self,
        conn: sqlite3.Connection,
        loan: Loan,
        book_price: Decimal,
        policy: FinePolicy,
    ) -> LostSettlement:
        # The copy never came back, so inventory stays as it is and no return date is set.
        lost_fine = lost_report_fine(book_price, policy)
        self._transition(conn, loan, LoanStatus.LOST, total_fine=lost_fine, returned_at=None)
        conn.execute(
            """
            UPDATE loaned_items
            SET returned = 0, damage_level = ?, damage_notes = ?, damage_fine = ?
            WHERE loan_id = ?
            """,
            (DamageLevel.LARGE.value, REPORTED_LOST_NOTE, str(lost_fine), loan.loan_id),
        )
        logger.info(f"Loan {loan.loan_id} reported lost: fine={lost_fine}")
        return LostSettlement(
            loan=self.get(conn, loan.loan_id),
            lost_fine=lost_fine,
            book_price=to_money(book_price),
            multiplier=policy.lost_multiplier,
        )

    def _transition(
        self,
        conn: sqlite3.Connection,
        loan: Loan,
        target: LoanStatus,
        total_fine: Decimal,
        returned_at: Optional[datetime],
    ) -> None:
        if not loan.status.can_transition_to(target):
            raise NotActiveError("This borrowing has already been settled")
        # The status guard makes a racing second settlement a no-op we can detect.
        cursor = conn.execute(
            """
            UPDATE loans SET status = ?, total_fine = ?, returned_at = ?
            WHERE id = ? AND status = ?
            """,
            (target.value, str(total_fine), to_timestamp(returned_at), loan.loan_id, LoanStatus.ACTIVE.value),
        )
        if cursor.rowcount != 1:
            raise NotActiveError("This borrowing has already been settled")
        conn.execute("UPDATE loan_participants SET active = 0 WHERE loan_id = ?", (loan.loan_id,))
