import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings
from circulation.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# Resolved once from settings; callers may pass an explicit path instead.
DATABASE_FILE = settings.database_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the circulation database.

    Transactions are controlled explicitly (``isolation_level=None``) so that
    :func:`transaction` can take the write lock up front.
    """
    try:
        conn = sqlite3.connect(
            db_file or DATABASE_FILE,
            timeout=settings.db_busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
    except sqlite3.Error as e:
        raise StoreUnavailableError(f"Could not open database: {e}") from e
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the block as one unit of work under the database write lock.

    ``BEGIN IMMEDIATE`` serialises writers, so a read made inside the block
    cannot go stale before the block's own writes land. Any exception rolls
    the whole block back.
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.OperationalError as e:
        raise StoreUnavailableError(f"Could not start transaction: {e}") from e
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    try:
        conn.execute("COMMIT")
    except sqlite3.OperationalError as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise StoreUnavailableError(f"Could not commit transaction: {e}") from e


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    conn = get_db_connection(db_file)
    try:
        yield conn
    except sqlite3.OperationalError as e:
        logger.error(f"Database operation failed: {e}")
        raise StoreUnavailableError(str(e)) from e
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the circulation tables if they do not exist yet."""
    with connection(db_file) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS students (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                full_name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'STUDENT',
                is_verified INTEGER NOT NULL DEFAULT 0,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                isbn TEXT UNIQUE,
                price TEXT NOT NULL,
                total_copies INTEGER NOT NULL DEFAULT 3,
                available_copies INTEGER NOT NULL DEFAULT 3,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK (available_copies >= 0 AND available_copies <= total_copies)
            );

            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                participant_ids TEXT NOT NULL,
                borrow_type TEXT NOT NULL CHECK (borrow_type IN ('INDIVIDUAL', 'GROUP')),
                borrowed_at TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_at TEXT,
                status TEXT NOT NULL DEFAULT 'ACTIVE'
                    CHECK (status IN ('ACTIVE', 'RETURNED', 'OVERDUE', 'LOST')),
                total_fine TEXT NOT NULL DEFAULT '0'
            );

            CREATE TABLE IF NOT EXISTS loaned_items (
                id TEXT PRIMARY KEY,
                loan_id TEXT NOT NULL UNIQUE,
                book_id TEXT NOT NULL,
                returned INTEGER NOT NULL DEFAULT 0,
                damage_level TEXT NOT NULL DEFAULT 'NONE'
                    CHECK (damage_level IN ('NONE', 'SMALL', 'LARGE')),
                damage_notes TEXT,
                damage_fine TEXT NOT NULL DEFAULT '0',
                FOREIGN KEY (loan_id) REFERENCES loans(id) ON DELETE CASCADE,
                FOREIGN KEY (book_id) REFERENCES books(id)
            );

            CREATE TABLE IF NOT EXISTS loan_participants (
                loan_id TEXT NOT NULL,
                participant_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                active INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY (loan_id, participant_id),
                FOREIGN KEY (loan_id) REFERENCES loans(id) ON DELETE CASCADE,
                FOREIGN KEY (participant_id) REFERENCES students(id)
            );

            CREATE TABLE IF NOT EXISTS fine_config (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                daily_rate TEXT NOT NULL,
                lost_multiplier TEXT NOT NULL,
                small_damage_pct TEXT NOT NULL,
                large_damage_pct TEXT NOT NULL,
                overdue_threshold_days INTEGER NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- At most one active loan per participant.
            CREATE UNIQUE INDEX IF NOT EXISTS idx_loan_participants_one_active
                ON loan_participants(participant_id) WHERE active = 1;
            CREATE INDEX IF NOT EXISTS idx_loan_participants_participant
                ON loan_participants(participant_id);
            CREATE INDEX IF NOT EXISTS idx_loans_status ON loans(status);
            CREATE INDEX IF NOT EXISTS idx_loaned_items_book_id ON loaned_items(book_id);
            CREATE INDEX IF NOT EXISTS idx_students_email ON students(lower(email));
        """)


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create tables if needed; safe to call on every start."""
    create_tables(db_file)
    logger.debug(f"Database ready at {db_file or DATABASE_FILE}")
