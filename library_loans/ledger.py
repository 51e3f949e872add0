"""Loan ledger: borrowing, returning, extending and the overdue sweep.

Loan lifecycle::

    active --return--> returned
    active --due date passes, overdue sweep--> overdue --return--> returned

``returned`` is terminal. The stored ``overdue`` status is a cache that the
sweep in ``list_overdue()`` refreshes; ``Loan.is_overdue()`` is the answer
against the current clock.

Availability is accounted against *outstanding* loans (active or overdue):
a book that went overdue is still off the shelf.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from library_loans.config import settings
from library_loans.database import connection, new_id, parse_iso, to_iso, transaction, utcnow
from library_loans.errors import ConflictError, NotFoundError, ValidationError
from library_loans.loan import (
    JOINED_LOAN_COLUMNS,
    JOINED_LOAN_FROM,
    Loan,
    LoanStatus,
    count_outstanding,
)
from library_loans.locks import KeyedLock
from library_loans.validators import NumberValidator, TextValidator

logger = logging.getLogger(__name__)


class LoanLedger:
    """The authoritative collection of loans and their status."""

    def __init__(self, db_file: Optional[str] = None, locks: Optional[KeyedLock] = None,
                 loan_days: Optional[int] = None, extension_days: Optional[int] = None) -> None:
        self.db_file = db_file
        self.locks = locks or KeyedLock()
        self.loan_days = loan_days if loan_days is not None else settings.default_loan_days
        self.extension_days = extension_days if extension_days is not None else settings.default_extension_days

    # ------------------------- Reads ------------------------- #
    def list_loans(self, status: Optional[str] = None) -> List[Loan]:
        """All loans, newest first, optionally filtered by exact status."""
        sql = f"SELECT {JOINED_LOAN_COLUMNS} FROM {JOINED_LOAN_FROM}"
        params: list = []
        if status:
            try:
                params.append(LoanStatus(status).value)
            except ValueError:
                raise ValidationError(
                    f"Invalid status '{status}'. Expected one of: {', '.join(s.value for s in LoanStatus)}"
                ) from None
            sql += " WHERE l.status = ?"
        sql += " ORDER BY l.loaned_at DESC"

        with connection(self.db_file) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Loan.from_row(row) for row in rows]

    def get_loan(self, loan_id: str) -> Loan:
        with connection(self.db_file) as conn:
            return self._fetch(conn, loan_id)

    # ------------------------- Lifecycle ------------------------- #
    def create_loan(self, member_id: Optional[str], book_id: Optional[str],
                    due_at: Optional[datetime] = None) -> Loan:
        """Lend a book to a member.

        The availability count and the insert run under the book's lock and
        inside one BEGIN IMMEDIATE transaction, so two borrowers racing for
        the last copy cannot both get it.
        """
        if TextValidator.is_blank(member_id) or TextValidator.is_blank(book_id):
            raise ValidationError("Member ID and Book ID are required")

        now = utcnow()
        loaned_at = to_iso(now)
        try:
            due = to_iso(due_at) if due_at is not None else to_iso(now + timedelta(days=self.loan_days))
        except OverflowError as e:
            raise ValidationError("Due date out of range") from e
        loan_id = new_id()

        with self.locks.hold(book_id):
            try:
                with transaction(self.db_file, immediate=True) as conn:
                    if conn.execute("SELECT 1 FROM members WHERE id = ?", (member_id,)).fetchone() is None:
                        raise NotFoundError("Member not found")
                    book = conn.execute("SELECT copies FROM books WHERE id = ?", (book_id,)).fetchone()
                    if book is None:
                        raise NotFoundError("Book not found")

                    if count_outstanding(conn, book_id=book_id) >= book["copies"]:
                        raise ConflictError("No copies available for loan")
                    if count_outstanding(conn, book_id=book_id, member_id=member_id) > 0:
                        raise ConflictError("Member already has this book on loan")

                    conn.execute(
                        """
                        INSERT INTO loans (id, member_id, book_id, loaned_at, due_at, returned_at,
                                           status, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, NULL, ?, ?, ?)
                        """,
                        (loan_id, member_id, book_id, loaned_at, due, LoanStatus.ACTIVE.value, loaned_at, loaned_at),
                    )
                    loan = self._fetch(conn, loan_id)
            except sqlite3.IntegrityError as e:
                # The partial unique index caught a second outstanding loan.
                logger.warning(f"Duplicate outstanding loan rejected by the store: member={member_id} book={book_id}")
                raise ConflictError("Member already has this book on loan") from e
            except ConflictError as e:
                logger.warning(f"Loan refused: member={member_id} book={book_id}: {e.message}")
                raise

        logger.info(f"Loan created: id={loan_id} member={member_id} book={book_id} due={due}")
        return loan

    def return_loan(self, loan_id: str) -> Loan:
        """Mark a loan returned. Works for active and overdue loans."""
        now = to_iso(utcnow())
        with transaction(self.db_file, immediate=True) as conn:
            row = conn.execute("SELECT status FROM loans WHERE id = ?", (loan_id,)).fetchone()
            if row is None:
                raise NotFoundError("Loan not found")
            cursor = conn.execute(
                "UPDATE loans SET status = ?, returned_at = ?, updated_at = ? WHERE id = ? AND status != ?",
                (LoanStatus.RETURNED.value, now, now, loan_id, LoanStatus.RETURNED.value),
            )
            if cursor.rowcount == 0:
                logger.warning(f"Loan {loan_id} was already returned")
                raise ConflictError("Book already returned")
            loan = self._fetch(conn, loan_id)

        logger.info(f"Loan returned: id={loan_id}")
        return loan

    def extend_loan(self, loan_id: str, days: Optional[int] = None) -> Loan:
        """Push the due date of an active loan back by ``days`` (default from settings)."""
        days = self.extension_days if days is None else NumberValidator.extension_days(days)
        with transaction(self.db_file, immediate=True) as conn:
            row = conn.execute("SELECT status, due_at FROM loans WHERE id = ?", (loan_id,)).fetchone()
            if row is None:
                raise NotFoundError("Loan not found")
            if row["status"] != LoanStatus.ACTIVE.value:
                logger.warning(f"Refused to extend loan {loan_id} in status {row['status']}")
                raise ConflictError("Can only extend active loans")

            try:
                new_due = to_iso(parse_iso(row["due_at"]) + timedelta(days=days))
            except OverflowError as e:
                raise ValidationError("Due date out of range") from e
            conn.execute(
                "UPDATE loans SET due_at = ?, updated_at = ? WHERE id = ?",
                (new_due, to_iso(utcnow()), loan_id),
            )
            loan = self._fetch(conn, loan_id)

        logger.info(f"Loan extended: id={loan_id} days={days} due={new_due}")
        return loan

    def delete_loan(self, loan_id: str) -> None:
        """Administrative hard delete. Skips every lifecycle rule."""
        with connection(self.db_file) as conn:
            deleted = conn.execute("DELETE FROM loans WHERE id = ?", (loan_id,)).rowcount
        if deleted == 0:
            raise NotFoundError("Loan not found")
        logger.info(f"Loan deleted: id={loan_id}")

    # ------------------------- Overdue & statistics ------------------------- #
    def list_overdue(self, now: Optional[datetime] = None) -> List[Loan]:
        """Sweep active loans past their due date to ``overdue`` and list every
        unreturned overdue loan, earliest due date first."""
        now_iso = to_iso(now or utcnow())
        with transaction(self.db_file, immediate=True) as conn:
            flipped = conn.execute(
                "UPDATE loans SET status = ?, updated_at = ? WHERE status = ? AND due_at < ?",
                (LoanStatus.OVERDUE.value, now_iso, LoanStatus.ACTIVE.value, now_iso),
            ).rowcount
            rows = conn.execute(
                f"""
                SELECT {JOINED_LOAN_COLUMNS} FROM {JOINED_LOAN_FROM}
                WHERE l.status = ? AND l.returned_at IS NULL
                ORDER BY l.due_at ASC
                """,
                (LoanStatus.OVERDUE.value,),
            ).fetchall()

        if flipped:
            logger.info(f"Overdue sweep marked {flipped} loan(s) overdue")
        return [Loan.from_row(row) for row in rows]

    def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Loan counts from one aggregate query, so they describe a single point in time.

        Each loan is counted exactly once: returned; overdue (stored overdue,
        or active past its due date); or active (not yet due).
        """
        now_iso = to_iso(now or utcnow())
        with connection(self.db_file) as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(status = 'active' AND due_at >= ?), 0) AS active,
                    COALESCE(SUM(status = 'returned'), 0) AS returned,
                    COALESCE(SUM(status = 'overdue' OR (status = 'active' AND due_at < ?)), 0) AS overdue
                FROM loans
                """,
                (now_iso, now_iso),
            ).fetchone()
        return {"total": row["total"], "active": row["active"], "returned": row["returned"], "overdue": row["overdue"]}

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _fetch(conn: sqlite3.Connection, loan_id: str) -> Loan:
        row = conn.execute(
            f"SELECT {JOINED_LOAN_COLUMNS} FROM {JOINED_LOAN_FROM} WHERE l.id = ?",
            (loan_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError("Loan not found")
        return Loan.from_row(row)
