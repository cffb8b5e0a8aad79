import sqlite3
from typing import Optional

from circulation.models import BookStock


class CatalogStore:
    """Read access to catalog books; copy counters are written only by the ledger."""

    def get_book(self, conn: sqlite3.Connection, book_id: str, include_deleted: bool = False) -> Optional[BookStock]:
        query = "SELECT id, title, isbn, price, total_copies, available_copies, is_deleted FROM books WHERE id = ?"
        if not include_deleted:
            query += " AND is_deleted = 0"
        row = conn.execute(query, (book_id,)).fetchone()
        return BookStock.from_row(row) if row else None
