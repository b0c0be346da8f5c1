import re
from datetime import date, datetime, timezone
from typing import Optional

BORROWER_CATEGORIES = ("primary", "middle", "secondary", "university", "graduate")
BORROWING_STATUSES = ("borrowed", "returned", "overdue")


class DateValidator:
    """ISO date helpers for the string dates kept in records."""

    @staticmethod
    def parse(value: Optional[str]) -> Optional[date]:
        if not value or not isinstance(value, str):
            return None
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None

    @staticmethod
    def is_iso_date(value: Optional[str]) -> bool:
        return DateValidator.parse(value) is not None

    @staticmethod
    def today() -> str:
        return date.today().isoformat()

    @staticmethod
    def now() -> str:
        """UTC timestamp with millisecond precision and a Z suffix."""
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TextValidator:
    """Basic text checks for names and contact fields."""

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        if name is None:
            return False
        t = name.strip()
        if not t:
            return False
        return any(c.isalpha() for c in t)

    @staticmethod
    def sanitize_text(text: str) -> str:
        if text is None:
            return ""
        return re.sub(r"<[^>]*>", "", text).strip()


def split_list_field(value: Optional[str], pattern: str = r",") -> list:
    """Split a comma-joined free-text field (genres, tags, favorites) into trimmed items."""
    if not value or not isinstance(value, str):
        return []
    return [item.strip() for item in re.split(pattern, value) if item.strip()]
