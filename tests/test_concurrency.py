import random
import threading
from datetime import timedelta

import pytest

from circulation.errors import AlreadyBorrowingError, CirculationError, ConflictError, OutOfStockError
from circulation.library import Library
from circulation.models import LoanStatus


def _race(workers):
    """Run ``workers`` at once and return (successes, errors)."""
    barrier = threading.Barrier(len(workers))
    results, errors = [], []
    lock = threading.Lock()

    def run(work):
        barrier.wait()
        try:
            value = work()
        except Exception as e:  # collected for the assertions below
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(value)

    threads = [threading.Thread(target=run, args=(work,)) for work in workers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results, errors


def test_last_copy_is_lent_once(lib, add_student, add_book):
    book_id = add_book("Last Copy", copies=1)
    students = [add_student(f"racer{i}@uni.edu", f"Racer {i}") for i in range(6)]

    results, errors = _race([lambda s=s: lib.borrow(s, book_id) for s in students])

    assert len(results) == 1
    assert len(errors) == 5
    assert all(isinstance(e, (OutOfStockError, ConflictError)) for e in errors)
    snap = lib.inventory(book_id)
    assert snap.available_copies == 0
    assert snap.active_loans == 1


def test_same_student_cannot_hold_two_loans(lib, add_student, add_book):
    student = add_student("eager@uni.edu", "Eager")
    books = [add_book(f"Book {i}") for i in range(4)]

    results, errors = _race([lambda b=b: lib.borrow(student, b) for b in books])

    assert len(results) == 1
    assert all(isinstance(e, AlreadyBorrowingError) for e in errors)
    assert len(lib.list_loans(student, status=LoanStatus.ACTIVE)) == 1
    assert sum(lib.inventory(b).available_copies for b in books) == 4 * 3 - 1


def test_separate_library_instances_share_the_store(db_file, clock, add_student, add_book):
    book_id = add_book("Shared", copies=1)
    a = add_student("a@uni.edu", "A")
    b = add_student("b@uni.edu", "B")
    desk_one = Library(db_file=db_file, clock=clock)
    desk_two = Library(db_file=db_file, clock=clock)

    results, errors = _race([lambda: desk_one.borrow(a, book_id), lambda: desk_two.borrow(b, book_id)])

    assert len(results) == 1
    assert len(errors) == 1
    assert desk_one.inventory(book_id).available_copies == 0


@pytest.mark.parametrize("seed", [7, 21, 1984])
def test_inventory_is_conserved_over_random_operations(lib, add_student, add_book, clock, seed):
    rng = random.Random(seed)
    book_id = add_book("Conserved", price="30", copies=3)
    students = [add_student(f"s{seed}_{i}@uni.edu", f"Student {i}") for i in range(5)]

    for _ in range(60):
        clock.advance(days=rng.randint(0, 20))
        student = rng.choice(students)
        op = rng.choice(["borrow", "return", "lost"])
        active = lib.list_loans(student, status=LoanStatus.ACTIVE)
        try:
            if op == "borrow":
                lib.borrow(student, book_id, due_date=clock.now + timedelta(days=rng.randint(1, 10)))
            elif active and op == "return":
                lib.return_book(active[0].loan_id, student, damage_level=rng.choice(["NONE", "SMALL", "LARGE"]))
            elif active:
                lib.report_lost(active[0].loan_id, student)
        except CirculationError:
            pass
        snap = lib.inventory(book_id)
        assert snap.available_copies + snap.active_loans + snap.lost_copies == snap.total_copies
        assert 0 <= snap.available_copies <= snap.total_copies
