import sqlite3
from typing import Dict, Optional, Sequence

from circulation.models import Participant


class IdentityProvider:
    """Read-only view of student accounts. Registration happens elsewhere."""

    def get(self, conn: sqlite3.Connection, participant_id: str) -> Optional[Participant]:
        row = conn.execute("SELECT * FROM students WHERE id = ?", (participant_id,)).fetchone()
        return Participant.from_row(row) if row else None

    def resolve_emails(self, conn: sqlite3.Connection, emails: Sequence[str]) -> Dict[str, Participant]:
        """Map each lower-cased email to a student who is allowed to borrow.

        Unverified, removed and non-student accounts are left out, so a
        missing key means the email did not resolve.
        """
        if not emails:
            return {}
        placeholders = ", ".join("?" for _ in emails)
        rows = conn.execute(
            f"""
            SELECT * FROM students
            WHERE lower(email) IN ({placeholders})
              AND role = 'STUDENT' AND is_verified = 1 AND is_deleted = 0
            """,
            [e.lower() for e in emails],
        ).fetchall()
        return {row["email"].lower(): Participant.from_row(row) for row in rows}
