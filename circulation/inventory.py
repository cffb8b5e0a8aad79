import logging
import sqlite3
from typing import Tuple

from circulation.errors import InventoryIntegrityError, NotFoundError

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Owns ``books.available_copies``.

    Each adjustment is a single conditional UPDATE issued on the caller's
    connection, so it commits or rolls back with the caller's loan
    transaction. Nothing here commits.
    """

    def decrement_if_positive(self, conn: sqlite3.Connection, book_id: str) -> bool:
        """Take one copy off the shelf. Returns False if none were left."""
        cursor = conn.execute(
            """
            UPDATE books SET available_copies = available_copies - 1
            WHERE id = ? AND available_copies > 0
            """,
            (book_id,),
        )
        if cursor.rowcount == 1:
            return True
        logger.info(f"No copy of book {book_id} left to lend")
        return False

    def increment(self, conn: sqlite3.Connection, book_id: str) -> None:
        """Put one copy back. Exceeding ``total_copies`` is refused, not clamped."""
        cursor = conn.execute(
            """
            UPDATE books SET available_copies = available_copies + 1
            WHERE id = ? AND available_copies < total_copies
            """,
            (book_id,),
        )
        if cursor.rowcount == 1:
            return
        total, available = self.snapshot(conn, book_id)
        logger.error(
            f"Refusing to return a copy of book {book_id}: "
            f"available_copies={available} already equals total_copies={total}"
        )
        raise InventoryIntegrityError(
            f"Book {book_id} would exceed its total of {total} copies"
        )

    def snapshot(self, conn: sqlite3.Connection, book_id: str) -> Tuple[int, int]:
        """Return ``(total_copies, available_copies)``."""
        row = conn.execute(
            "SELECT total_copies, available_copies FROM books WHERE id = ?",
            (book_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Book {book_id} not found")
        return int(row["total_copies"]), int(row["available_copies"])
