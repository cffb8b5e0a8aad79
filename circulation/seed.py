"""Demo students and books for a fresh database.

Accounts and the catalog are owned by other services; these helpers only
exist so the desk can be tried out locally and so tests have rows to work on.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from decimal import Decimal
from typing import Dict, Optional, Union

from circulation.database import connection, initialize_database, transaction

logger = logging.getLogger(__name__)

DEMO_STUDENTS = [
    ("stu_alice", "alice@library.com", "Alice Reader"),
    ("stu_bob", "bob@library.com", "Bob Borrower"),
    ("stu_carol", "carol@library.com", "Carol Scholar"),
    ("stu_dave", "dave@library.com", "Dave Student"),
]

DEMO_BOOKS = [
    ("book_gatsby", "The Great Gatsby", "978-0-307-47431-9", "15.99", 5),
    ("book_algorithms", "Introduction to Algorithms", "978-0-134-68573-5", "89.99", 3),
    ("book_clean_code", "Clean Code", "978-0-321-57351-3", "45.99", 4),
    ("book_calculus", "Calculus Made Easy", "978-0-486-41147-7", "12.99", 6),
    ("book_brief_history", "A Brief History of Time", "978-0-307-26543-9", "18.99", 4),
    ("book_guns_of_august", "The Guns of August", "978-0-7432-7356-5", "16.99", 3),
]


def insert_student(
    conn: sqlite3.Connection,
    email: str,
    full_name: str,
    student_id: Optional[str] = None,
    role: str = "STUDENT",
    is_verified: bool = True,
    is_deleted: bool = False,
) -> str:
    student_id = student_id or f"stu_{uuid.uuid4().hex[:12]}"
    conn.execute(
        """
        INSERT OR IGNORE INTO students (id, email, full_name, role, is_verified, is_deleted)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (student_id, email, full_name, role, int(is_verified), int(is_deleted)),
    )
    return student_id


def insert_book(
    conn: sqlite3.Connection,
    title: str,
    price: Union[Decimal, str],
    copies: int = 3,
    book_id: Optional[str] = None,
    isbn: Optional[str] = None,
    available: Optional[int] = None,
    is_deleted: bool = False,
) -> str:
    book_id = book_id or f"book_{uuid.uuid4().hex[:12]}"
    conn.execute(
        """
        INSERT OR IGNORE INTO books (id, title, isbn, price, total_copies, available_copies, is_deleted)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            book_id,
            title,
            isbn,
            str(Decimal(str(price))),
            copies,
            copies if available is None else available,
            int(is_deleted),
        ),
    )
    return book_id


def seed_demo_data(db_file: Optional[str] = None) -> Dict[str, int]:
    """Insert the demo rows. Existing ids and emails are left untouched."""
    initialize_database(db_file)
    with connection(db_file) as conn, transaction(conn):
        for student_id, email, full_name in DEMO_STUDENTS:
            insert_student(conn, email, full_name, student_id=student_id)
        insert_student(conn, "pending@library.com", "Pat Pending", student_id="stu_pending", is_verified=False)
        for book_id, title, isbn, price, copies in DEMO_BOOKS:
            insert_book(conn, title, price, copies=copies, book_id=book_id, isbn=isbn)
    counts = {"students": len(DEMO_STUDENTS) + 1, "books": len(DEMO_BOOKS)}
    logger.info(f"Seeded {counts['students']} students and {counts['books']} books")
    return counts
