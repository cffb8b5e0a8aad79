"""Borrow preconditions.

The checker only reads. It is called inside the same transaction that opens
the loan, so nothing it has seen can change before the loan is written.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Union

from config import settings
from circulation.catalog import CatalogStore
from circulation.errors import (
    AlreadyBorrowingError,
    InvalidDueDateError,
    InvalidRequestError,
    NotFoundError,
    OutOfStockError,
    UnknownParticipantError,
)
from circulation.identity import IdentityProvider
from circulation.models import BookStock, BorrowType, Participant
from circulation.validators import EmailValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BorrowAuthorization:
    """Everything :meth:`LoanStateMachine.open` needs, already validated."""

    book: BookStock
    participants: List[Participant]
    borrow_type: BorrowType
    due_date: datetime

    @property
    def participant_ids(self) -> List[str]:
        return [p.participant_id for p in self.participants]


def parse_borrow_type(value: Union[BorrowType, str, None], has_others: bool) -> BorrowType:
    if value is None:
        return BorrowType.GROUP if has_others else BorrowType.INDIVIDUAL
    if isinstance(value, BorrowType):
        return value
    try:
        return BorrowType(str(value).upper())
    except ValueError:
        raise InvalidRequestError("Invalid borrow type. Must be INDIVIDUAL or GROUP") from None


class EligibilityChecker:
    def __init__(
        self,
        catalog: Optional[CatalogStore] = None,
        identity: Optional[IdentityProvider] = None,
        default_loan_days: Optional[int] = None,
    ) -> None:
        self.catalog = catalog or CatalogStore()
        self.identity = identity or IdentityProvider()
        self.default_loan_days = default_loan_days or settings.default_loan_days

    def check(
        self,
        conn: sqlite3.Connection,
        requester_id: str,
        book_id: str,
        participant_emails: Optional[Sequence[str]],
        due_date: Optional[datetime],
        borrow_type: Union[BorrowType, str, None],
        now: datetime,
    ) -> BorrowAuthorization:
        book = self.catalog.get_book(conn, book_id)
        if book is None:
            raise NotFoundError("Book not found or unavailable")
        if not book.in_stock:
            raise OutOfStockError(f'"{book.title}" is currently out of stock')

        requester = self.identity.get(conn, requester_id)
        if requester is None or not requester.can_borrow:
            raise NotFoundError("Requesting student not found")

        emails = EmailValidator.normalize_all(participant_emails)
        others = [e for e in emails if e != requester.email.lower()]
        kind = parse_borrow_type(borrow_type, has_others=bool(others))

        participants = [requester]
        if kind is BorrowType.GROUP:
            participants.extend(self._resolve_group(conn, others))
        elif others:
            logger.debug(f"Ignoring {len(others)} participant email(s) on an individual borrow")

        self._ensure_no_active_loans(conn, participants)

        return BorrowAuthorization(
            book=book,
            participants=participants,
            borrow_type=kind,
            due_date=self._resolve_due_date(due_date, now),
        )

    def _resolve_group(self, conn: sqlite3.Connection, emails: List[str]) -> List[Participant]:
        if not emails:
            raise UnknownParticipantError(
                "At least one other student email is required for group borrowing"
            )
        resolved: Dict[str, Participant] = self.identity.resolve_emails(
            conn, [e for e in emails if EmailValidator.is_valid_email(e)]
        )
        missing = [e for e in emails if e not in resolved]
        if missing:
            raise UnknownParticipantError(
                f"Some student emails not found or invalid: {', '.join(missing)}",
                identifiers=missing,
            )
        return [resolved[e] for e in emails]

    def _ensure_no_active_loans(self, conn: sqlite3.Connection, participants: List[Participant]) -> None:
        holders = active_holdings(conn, [p.participant_id for p in participants])
        if holders:
            raise already_borrowing(holders)

    def _resolve_due_date(self, due_date: Optional[datetime], now: datetime) -> datetime:
        if due_date is None:
            return now + timedelta(days=self.default_loan_days)
        if due_date.tzinfo is None:
            due_date = due_date.replace(tzinfo=now.tzinfo)
        if due_date <= now:
            raise InvalidDueDateError("Due date must be in the future")
        return due_date


def active_holdings(
    conn: sqlite3.Connection,
    participant_ids: Sequence[str],
    exclude_loan_id: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Participants among ``participant_ids`` who hold an ACTIVE loan, with its book."""
    if not participant_ids:
        return []
    placeholders = ", ".join("?" for _ in participant_ids)
    params = list(participant_ids)
    query = f"""
        SELECT lp.participant_id, s.email, s.full_name, l.id AS loan_id, b.title AS book_title
        FROM loan_participants lp
        JOIN loans l ON l.id = lp.loan_id
        JOIN students s ON s.id = lp.participant_id
        LEFT JOIN loaned_items li ON li.loan_id = l.id
        LEFT JOIN books b ON b.id = li.book_id
        WHERE lp.participant_id IN ({placeholders}) AND l.status = 'ACTIVE'
    """
    if exclude_loan_id is not None:
        query += " AND l.id != ?"
        params.append(exclude_loan_id)
    query += " ORDER BY lp.participant_id"
    return [dict(row) for row in conn.execute(query, params).fetchall()]


def already_borrowing(holders: List[Dict[str, str]]) -> AlreadyBorrowingError:
    details = ", ".join(
        f'{h["full_name"]} ({h["email"]}) has an active borrowing for "{h["book_title"]}"'
        for h in holders
    )
    return AlreadyBorrowingError(f"Cannot borrow: {details}", holders=holders)
