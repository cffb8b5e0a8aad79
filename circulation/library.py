import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Union

from circulation.catalog import CatalogStore
from circulation.database import connection, initialize_database, transaction
from circulation.eligibility import EligibilityChecker
from circulation.errors import CirculationError, InvalidRequestError, NotFoundError
from circulation.identity import IdentityProvider
from circulation.inventory import InventoryLedger
from circulation.loans import LoanStateMachine
from circulation.models import BorrowType, DamageLevel, LoanStatus, utcnow
from circulation.policy import FinePolicy, FinePolicyStore
from circulation.receipts import (
    BorrowReceipt,
    FineSummary,
    InventorySnapshot,
    LoanSummary,
    LostReport,
    ParticipantModel,
    ReturnReceipt,
)
from circulation.validators import TextValidator

logger = logging.getLogger(__name__)


def parse_damage_level(value: Union[DamageLevel, str, None]) -> DamageLevel:
    if value is None:
        return DamageLevel.NONE
    if isinstance(value, DamageLevel):
        return value
    try:
        return DamageLevel(str(value).upper())
    except ValueError:
        raise InvalidRequestError("Invalid damage level. Must be NONE, SMALL, or LARGE") from None


def parse_status(value: Union[LoanStatus, str, None]) -> Optional[LoanStatus]:
    if value is None or isinstance(value, LoanStatus):
        return value
    try:
        return LoanStatus(str(value).upper())
    except ValueError:
        raise InvalidRequestError(f"Unknown loan status: {value}") from None


class Library:
    """Circulation desk: borrow, return and report lost books.

    Every operation opens its own connection and runs as a single
    transaction, so one ``Library`` can be shared between threads and
    several processes can share one database file.
    """

    def __init__(
        self,
        db_file: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        default_loan_days: Optional[int] = None,
    ) -> None:
        self.db_file = db_file
        self.clock = clock
        self.catalog = CatalogStore()
        self.identity = IdentityProvider()
        self.policies = FinePolicyStore()
        self.ledger = InventoryLedger()
        self.loans = LoanStateMachine(self.ledger)
        self.eligibility = EligibilityChecker(self.catalog, self.identity, default_loan_days)
        initialize_database(db_file)

    # ------------------------- Core operations ------------------------- #
    def borrow(
        self,
        requester_id: str,
        book_id: str,
        participant_emails: Optional[Sequence[str]] = None,
        due_date: Optional[datetime] = None,
        borrow_type: Union[BorrowType, str, None] = None,
    ) -> BorrowReceipt:
        now = self._now()
        try:
            with connection(self.db_file) as conn, transaction(conn):
                auth = self.eligibility.check(
                    conn, requester_id, book_id, participant_emails, due_date, borrow_type, now
                )
                loan = self.loans.open(conn, auth, now)
        except CirculationError as e:
            logger.info(f"Borrow of book {book_id} by {requester_id} refused ({e.kind}): {e.message}")
            raise
        return BorrowReceipt(
            loan_id=loan.loan_id,
            book_id=auth.book.book_id,
            book_title=auth.book.title,
            borrow_type=loan.borrow_type,
            due_date=loan.due_date,
            participants=[ParticipantModel(**p.to_dict()) for p in auth.participants],
        )

    def return_book(
        self,
        loan_id: str,
        requester_id: str,
        damage_level: Union[DamageLevel, str, None] = DamageLevel.NONE,
        damage_notes: Optional[str] = None,
    ) -> ReturnReceipt:
        level = parse_damage_level(damage_level)
        notes = TextValidator.sanitize_text(damage_notes)
        now = self._now()
        try:
            with connection(self.db_file) as conn, transaction(conn):
                loan = self.loans.get_for_participant(conn, loan_id, requester_id)
                book = self._book_for(conn, loan.book_id)
                policy = self.policies.load(conn)
                settlement = self.loans.settle_return(
                    conn, loan, level, notes, book.price, policy, now
                )
        except CirculationError as e:
            logger.info(f"Return of loan {loan_id} by {requester_id} refused ({e.kind}): {e.message}")
            raise
        fine = settlement.fine
        return ReturnReceipt(
            loan_id=loan_id,
            return_date=now,
            overdue_days=fine.overdue_days,
            overdue_fine=fine.overdue_fine,
            damage_fine=fine.damage_fine,
            lost_fine=fine.lost_fine,
            total_fine=fine.total_fine,
            is_overdue=fine.is_overdue,
            is_lost=fine.is_lost,
            damage_level=settlement.damage_level,
            final_status=settlement.loan.status,
        )

    def report_lost(self, loan_id: str, requester_id: str) -> LostReport:
        try:
            with connection(self.db_file) as conn, transaction(conn):
                loan = self.loans.get_for_participant(conn, loan_id, requester_id)
                book = self._book_for(conn, loan.book_id)
                policy = self.policies.load(conn)
                settlement = self.loans.settle_lost(conn, loan, book.price, policy)
        except CirculationError as e:
            logger.info(f"Loss report for loan {loan_id} by {requester_id} refused ({e.kind}): {e.message}")
            raise
        return LostReport(
            loan_id=loan_id,
            lost_fine=settlement.lost_fine,
            book_price=settlement.book_price,
            multiplier=settlement.multiplier,
        )

    # ------------------------- Queries ------------------------- #
    def list_loans(
        self, participant_id: str, status: Union[LoanStatus, str, None] = None
    ) -> List[LoanSummary]:
        """A participant's borrowing history, newest first."""
        wanted = parse_status(status)
        with connection(self.db_file) as conn:
            loans = self.loans.list_for_participant(conn, participant_id, wanted)
        return [LoanSummary.from_loan(loan) for loan in loans]

    def fine_summary(self, participant_id: str) -> FineSummary:
        with connection(self.db_file) as conn:
            loans = [
                loan
                for loan in self.loans.list_for_participant(conn, participant_id)
                if loan.status.is_terminal and loan.total_fine > 0
            ]
            policy = self.policies.load(conn)
        return FineSummary(
            participant_id=participant_id,
            loans=[LoanSummary.from_loan(loan) for loan in loans],
            total_fine=sum((loan.total_fine for loan in loans), Decimal("0.00")),
            policy=policy,
        )

    def inventory(self, book_id: str) -> InventorySnapshot:
        with connection(self.db_file) as conn:
            total, available = self.ledger.snapshot(conn, book_id)
            active, lost = self.loans.count_off_shelf(conn, book_id)
        return InventorySnapshot(
            book_id=book_id,
            total_copies=total,
            available_copies=available,
            active_loans=active,
            lost_copies=lost,
        )

    # ------------------------- Fine policy ------------------------- #
    def get_fine_policy(self) -> FinePolicy:
        with connection(self.db_file) as conn:
            return self.policies.load(conn)

    def update_fine_policy(self, policy: FinePolicy) -> FinePolicy:
        with connection(self.db_file) as conn, transaction(conn):
            return self.policies.save(conn, policy)

    def reset_fine_policy(self) -> FinePolicy:
        with connection(self.db_file) as conn, transaction(conn):
            return self.policies.reset(conn)

    # ------------------------- Helpers ------------------------- #
    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _book_for(self, conn, book_id: Optional[str]):
        # Settlement must still work for books removed from the catalog mid-loan.
        book = self.catalog.get_book(conn, book_id, include_deleted=True) if book_id else None
        if book is None:
            raise NotFoundError("No borrowed book found for this borrowing")
        return book
