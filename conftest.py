from datetime import datetime, timedelta, timezone

import pytest

from circulation.database import connection, transaction
from circulation.library import Library
from circulation.seed import insert_book, insert_student
from circulation.ui import OUTPUT_MODE_ENV

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock so fines can be tested at exact points in time."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, when):
        self.now = when
        return self.now


@pytest.fixture(autouse=True)
def _plain_output(monkeypatch):
    # The CLI stores its output mode in the environment; start every test in plain mode
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)


@pytest.fixture
def db_file(tmp_path, request):
    # One database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lib(db_file, clock):
    return Library(db_file=db_file, clock=clock)


@pytest.fixture
def add_student(lib):
    def _add(email, full_name=None, **kwargs):
        with connection(lib.db_file) as conn, transaction(conn):
            return insert_student(conn, email, full_name or email.split("@")[0].title(), **kwargs)
    return _add


@pytest.fixture
def add_book(lib):
    def _add(title="Test Book", price="1000", copies=3, **kwargs):
        with connection(lib.db_file) as conn, transaction(conn):
            return insert_book(conn, title, price, copies=copies, **kwargs)
    return _add
