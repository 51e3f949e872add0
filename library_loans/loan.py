from __future__ import annotations

import sqlite3
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from library_loans.database import parse_iso, utcnow


class LoanStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"


# Statuses of a loan whose book has not come back yet.
OUTSTANDING_STATUSES = (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value)

# Columns selected by every joined loan query: the loan row plus the
# member and book summaries (NULL when the referenced record is gone).
JOINED_LOAN_COLUMNS = """
    l.id AS id, l.member_id AS member_id, l.book_id AS book_id,
    l.loaned_at AS loaned_at, l.due_at AS due_at, l.returned_at AS returned_at,
    l.status AS status, l.created_at AS created_at, l.updated_at AS updated_at,
    m.name AS member_name, m.email AS member_email,
    b.title AS book_title, b.author AS book_author, b.isbn AS book_isbn
"""

JOINED_LOAN_FROM = """
    loans l
    LEFT JOIN members m ON m.id = l.member_id
    LEFT JOIN books b ON b.id = l.book_id
"""


class Loan:
    """A borrowing transaction between a member and a book.

    Timestamps are kept as the UTC strings the store holds.

    Attributes:
        status: the stored status. ``overdue`` in the store is only refreshed
            by the overdue sweep, so use ``is_overdue()`` when the answer must
            reflect the current time.
        member / book: summary dicts joined at read time, or None when the
            referenced record has been deleted.
    """

    def __init__(self, id: str, member_id: str, book_id: str, loaned_at: str, due_at: str,
                 returned_at: Optional[str] = None, status: str = LoanStatus.ACTIVE.value,
                 created_at: Optional[str] = None, updated_at: Optional[str] = None,
                 member: Optional[dict] = None, book: Optional[dict] = None) -> None:
        self.id = id
        self.member_id = member_id
        self.book_id = book_id
        self.loaned_at = loaned_at
        self.due_at = due_at
        self.returned_at = returned_at
        self.status = LoanStatus(status)
        self.created_at = created_at
        self.updated_at = updated_at
        self.member = member
        self.book = book

    @property
    def is_outstanding(self) -> bool:
        return self.status is not LoanStatus.RETURNED

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Return True if the book is still out and the due date has passed."""
        if self.returned_at is not None:
            return False
        now = now or utcnow()
        return parse_iso(self.due_at) < now

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            "id": self.id,
            "memberId": self.member_id,
            "bookId": self.book_id,
            "loanedAt": self.loaned_at,
            "dueAt": self.due_at,
            "returnedAt": self.returned_at,
            "status": self.status.value,
            "isOverdue": self.is_overdue(now),
            "member": self.member,
            "book": self.book,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Loan":
        keys = row.keys()
        member = None
        if "member_name" in keys and row["member_name"] is not None:
            member = {"id": row["member_id"], "name": row["member_name"], "email": row["member_email"]}
        book = None
        if "book_title" in keys and row["book_title"] is not None:
            book = {
                "id": row["book_id"],
                "title": row["book_title"],
                "author": row["book_author"],
                "isbn": row["book_isbn"],
            }
        return Loan(
            id=row["id"],
            member_id=row["member_id"],
            book_id=row["book_id"],
            loaned_at=row["loaned_at"],
            due_at=row["due_at"],
            returned_at=row["returned_at"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            member=member,
            book=book,
        )


def count_outstanding(conn: sqlite3.Connection, *, book_id: Optional[str] = None,
                      member_id: Optional[str] = None) -> int:
    """Count loans still out, optionally narrowed to one book and/or one member."""
    sql = "SELECT COUNT(*) FROM loans WHERE status IN (?, ?)"
    params: list = list(OUTSTANDING_STATUSES)
    if book_id is not None:
        sql += " AND book_id = ?"
        params.append(book_id)
    if member_id is not None:
        sql += " AND member_id = ?"
        params.append(member_id)
    return conn.execute(sql, params).fetchone()[0]
