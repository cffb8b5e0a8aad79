from datetime import timedelta

import pytest

from circulation.database import connection
from circulation.eligibility import EligibilityChecker, parse_borrow_type
from circulation.errors import (
    AlreadyBorrowingError,
    InvalidDueDateError,
    InvalidRequestError,
    NotFoundError,
    OutOfStockError,
    UnknownParticipantError,
)
from circulation.models import BorrowType


@pytest.fixture
def checker():
    return EligibilityChecker(default_loan_days=14)


@pytest.fixture
def people(add_student):
    return {
        "alice": add_student("alice@uni.edu", "Alice", student_id="stu_alice"),
        "bob": add_student("bob@uni.edu", "Bob", student_id="stu_bob"),
        "pending": add_student("pending@uni.edu", "Pending", student_id="stu_pending", is_verified=False),
        "gone": add_student("gone@uni.edu", "Gone", student_id="stu_gone", is_deleted=True),
        "admin": add_student("admin@uni.edu", "Admin", student_id="stu_admin", role="ADMIN"),
    }


def _check(lib, checker, requester, book_id, emails=None, due=None, kind=None):
    with connection(lib.db_file) as conn:
        return checker.check(conn, requester, book_id, emails, due, kind, lib.clock())


def test_individual_borrow_defaults(lib, checker, people, add_book, clock):
    book_id = add_book()
    auth = _check(lib, checker, people["alice"], book_id)
    assert auth.borrow_type is BorrowType.INDIVIDUAL
    assert auth.participant_ids == ["stu_alice"]
    assert auth.due_date == clock.now + timedelta(days=14)


def test_group_inferred_from_emails(lib, checker, people, add_book):
    book_id = add_book()
    auth = _check(lib, checker, people["alice"], book_id, emails=[" BOB@uni.edu ", "bob@uni.edu"])
    assert auth.borrow_type is BorrowType.GROUP
    assert auth.participant_ids == ["stu_alice", "stu_bob"]


def test_requester_email_is_dropped_from_group(lib, checker, people, add_book):
    book_id = add_book()
    with pytest.raises(UnknownParticipantError) as exc:
        _check(lib, checker, people["alice"], book_id, emails=["alice@uni.edu"], kind="GROUP")
    assert exc.value.identifiers == []


@pytest.mark.parametrize("email", ["pending@uni.edu", "gone@uni.edu", "admin@uni.edu", "nobody@uni.edu", "not-an-email"])
def test_group_member_must_be_active_verified_student(lib, checker, people, add_book, email):
    book_id = add_book()
    with pytest.raises(UnknownParticipantError) as exc:
        _check(lib, checker, people["alice"], book_id, emails=["bob@uni.edu", email])
    assert exc.value.identifiers == [email]
    assert exc.value.kind == "unknown_participant"


def test_individual_borrow_ignores_emails(lib, checker, people, add_book):
    book_id = add_book()
    auth = _check(lib, checker, people["alice"], book_id, emails=["bob@uni.edu"], kind="individual")
    assert auth.participant_ids == ["stu_alice"]


def test_unknown_or_deleted_book(lib, checker, people, add_book):
    deleted = add_book(is_deleted=True)
    with pytest.raises(NotFoundError):
        _check(lib, checker, people["alice"], "book_missing")
    with pytest.raises(NotFoundError):
        _check(lib, checker, people["alice"], deleted)


def test_out_of_stock(lib, checker, people, add_book):
    book_id = add_book(copies=2, available=0)
    with pytest.raises(OutOfStockError):
        _check(lib, checker, people["alice"], book_id)


def test_unknown_requester(lib, checker, people, add_book):
    book_id = add_book()
    with pytest.raises(NotFoundError):
        _check(lib, checker, "stu_nobody", book_id)
    with pytest.raises(NotFoundError):
        _check(lib, checker, people["gone"], book_id)


@pytest.mark.parametrize("who", ["pending", "admin"])
def test_requester_must_be_verified_student(lib, checker, people, add_book, who):
    book_id = add_book()
    with pytest.raises(NotFoundError, match="Requesting student not found"):
        _check(lib, checker, people[who], book_id)


def test_unverified_requester_cannot_borrow(lib, people, add_book):
    book_id = add_book(copies=2)
    with pytest.raises(NotFoundError):
        lib.borrow(people["pending"], book_id)
    assert lib.inventory(book_id).available_copies == 2
    assert lib.list_loans(people["pending"]) == []


def test_due_date_must_be_in_the_future(lib, checker, people, add_book, clock):
    book_id = add_book()
    with pytest.raises(InvalidDueDateError):
        _check(lib, checker, people["alice"], book_id, due=clock.now)
    with pytest.raises(InvalidDueDateError):
        _check(lib, checker, people["alice"], book_id, due=clock.now - timedelta(days=1))
    auth = _check(lib, checker, people["alice"], book_id, due=clock.now + timedelta(days=3))
    assert auth.due_date == clock.now + timedelta(days=3)


def test_naive_due_date_takes_clock_timezone(lib, checker, people, add_book, clock):
    book_id = add_book()
    naive = (clock.now + timedelta(days=2)).replace(tzinfo=None)
    auth = _check(lib, checker, people["alice"], book_id, due=naive)
    assert auth.due_date == clock.now + timedelta(days=2)


def test_active_borrower_is_refused(lib, checker, people, add_book):
    first = add_book("Dune")
    second = add_book("Emma")
    lib.borrow(people["bob"], first)
    with pytest.raises(AlreadyBorrowingError) as exc:
        _check(lib, checker, people["alice"], second, emails=["bob@uni.edu"])
    assert 'Bob (bob@uni.edu) has an active borrowing for "Dune"' in exc.value.message
    assert [h["participant_id"] for h in exc.value.holders] == ["stu_bob"]


def test_parse_borrow_type():
    assert parse_borrow_type(None, has_others=False) is BorrowType.INDIVIDUAL
    assert parse_borrow_type(None, has_others=True) is BorrowType.GROUP
    assert parse_borrow_type("group", has_others=False) is BorrowType.GROUP
    with pytest.raises(InvalidRequestError):
        parse_borrow_type("COMMITTEE", has_others=False)
