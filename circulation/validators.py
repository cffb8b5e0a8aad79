import re
from typing import Iterable, List, Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class EmailValidator:
    """Normalisation for participant emails supplied with a group borrow."""

    @staticmethod
    def normalize_email(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return raw.strip().lower()

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(_EMAIL_RE.match(email.strip()))

    @staticmethod
    def normalize_all(emails: Optional[Iterable[str]]) -> List[str]:
        """Lower-case, strip and de-duplicate, keeping first-seen order."""
        seen: List[str] = []
        for raw in emails or []:
            email = EmailValidator.normalize_email(raw)
            if email and email not in seen:
                seen.append(email)
        return seen


class TextValidator:
    """Free-text clean-up for damage notes."""

    MAX_NOTES_LENGTH = 1000

    @staticmethod
    def sanitize_text(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        cleaned = re.sub(r"<[^>]*>", "", text)
        cleaned = re.sub(r"\s+", " ", cleaned).strip()
        if not cleaned:
            return None
        return cleaned[: TextValidator.MAX_NOTES_LENGTH]
