import re
from typing import Any, Optional

from library_loans.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


class ISBNValidator:
    """ISBNs are opaque natural keys here: only surrounding whitespace is dropped,
    so short catalog codes such as "111" stay valid."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return str(raw).strip()


class TextValidator:

    @staticmethod
    def is_blank(text: Any) -> bool:
        return text is None or not isinstance(text, str) or not text.strip()

    @staticmethod
    def require_text(text: Any, message: str) -> str:
        if TextValidator.is_blank(text):
            raise ValidationError(message)
        return text.strip()


class EmailValidator:

    @staticmethod
    def normalize(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return str(raw).strip().lower()

    @staticmethod
    def is_valid(email: str) -> bool:
        return bool(_EMAIL_RE.match(email or ""))

    @staticmethod
    def require(raw: Optional[str]) -> str:
        email = EmailValidator.normalize(raw)
        if not EmailValidator.is_valid(email):
            raise ValidationError(f"Invalid email address: {raw!r}")
        return email


class NumberValidator:

    @staticmethod
    def _is_int(value: Any) -> bool:
        # bool is a subclass of int; `copies: true` is not a count.
        return isinstance(value, int) and not isinstance(value, bool)

    @staticmethod
    def copies(value: Any) -> int:
        if not NumberValidator._is_int(value) or value < 0:
            raise ValidationError("Copies must be an integer greater than or equal to 0")
        return value

    @staticmethod
    def extension_days(value: Any) -> int:
        if not NumberValidator._is_int(value) or value < 1:
            raise ValidationError("Extension days must be a positive integer")
        return value


def escape_like(query: str) -> str:
    """Escape SQL LIKE wildcards so the query matches literally (use with ESCAPE '\\')."""
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
