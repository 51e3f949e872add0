import logging
import sqlite3
from typing import List, Optional

from library_loans.database import connection, new_id, to_iso, transaction, utcnow
from library_loans.errors import ConflictError, NotFoundError, ValidationError
from library_loans.loan import JOINED_LOAN_COLUMNS, JOINED_LOAN_FROM, OUTSTANDING_STATUSES, Loan, count_outstanding
from library_loans.member import Member
from library_loans.validators import EmailValidator, TextValidator, escape_like

logger = logging.getLogger(__name__)

_MEMBER_COLUMNS = "id, name, email, joined_at, created_at, updated_at"


class MemberRegistry:
    """Registered members, keyed by id and by (lowercased) email."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def list_members(self) -> List[Member]:
        with connection(self.db_file) as conn:
            rows = conn.execute(f"SELECT {_MEMBER_COLUMNS} FROM members ORDER BY joined_at DESC").fetchall()
        return [Member.from_row(row) for row in rows]

    def get_member(self, member_id: str) -> Member:
        with connection(self.db_file) as conn:
            row = conn.execute(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE id = ?", (member_id,)).fetchone()
        if row is None:
            raise NotFoundError("Member not found")
        return Member.from_row(row)

    def get_member_by_email(self, email: str) -> Member:
        with connection(self.db_file) as conn:
            row = conn.execute(
                f"SELECT {_MEMBER_COLUMNS} FROM members WHERE email = ?",
                (EmailValidator.normalize(email),),
            ).fetchone()
        if row is None:
            raise NotFoundError("Member not found")
        return Member.from_row(row)

    def search_members(self, query: Optional[str]) -> List[Member]:
        """Case-insensitive substring search over name and email."""
        if TextValidator.is_blank(query):
            raise ValidationError("Search query is required")
        pattern = f"%{escape_like(query.strip().casefold())}%"
        with connection(self.db_file) as conn:
            rows = conn.execute(
                f"""
                SELECT {_MEMBER_COLUMNS} FROM members
                WHERE casefold(name) LIKE ? ESCAPE '\\' OR casefold(email) LIKE ? ESCAPE '\\'
                ORDER BY joined_at DESC
                """,
                (pattern, pattern),
            ).fetchall()
        return [Member.from_row(row) for row in rows]

    def create_member(self, name: Optional[str], email: Optional[str]) -> Member:
        if TextValidator.is_blank(name) or TextValidator.is_blank(email):
            raise ValidationError("Name and email are required")
        email = EmailValidator.require(email)
        now = to_iso(utcnow())
        member = Member(new_id(), name, email, joined_at=now, created_at=now, updated_at=now)

        try:
            with transaction(self.db_file, immediate=True) as conn:
                if self._email_taken(conn, member.email):
                    raise ConflictError("Member with this email already exists")
                conn.execute(
                    f"INSERT INTO members ({_MEMBER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (member.id, member.name, member.email, member.joined_at, member.created_at, member.updated_at),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Member with this email already exists") from e
        except ConflictError:
            logger.warning(f"Rejected duplicate email {member.email}")
            raise

        logger.info(f"Member created: id={member.id}")
        return member

    def update_member(self, member_id: str, *, name: Optional[str] = None, email: Optional[str] = None) -> Member:
        changes = {}
        if name is not None:
            changes["name"] = TextValidator.require_text(name, "Name cannot be empty")
        if email is not None:
            TextValidator.require_text(email, "Email cannot be empty")
            changes["email"] = EmailValidator.require(email)

        try:
            with transaction(self.db_file, immediate=True) as conn:
                row = conn.execute(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE id = ?", (member_id,)).fetchone()
                if row is None:
                    raise NotFoundError("Member not found")
                member = Member.from_row(row)

                if "email" in changes and changes["email"] != member.email and self._email_taken(conn, changes["email"]):
                    raise ConflictError("Member with this email already exists")

                for field, value in changes.items():
                    setattr(member, field, value)
                member.updated_at = to_iso(utcnow())
                conn.execute(
                    "UPDATE members SET name = ?, email = ?, updated_at = ? WHERE id = ?",
                    (member.name, member.email, member.updated_at, member_id),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Member with this email already exists") from e
        except ConflictError as e:
            logger.warning(f"Member update rejected for {member_id}: {e.message}")
            raise

        logger.info(f"Member updated: id={member_id} fields={sorted(changes)}")
        return member

    def delete_member(self, member_id: str) -> None:
        """Delete a member. Refused while the member still has books out."""
        with transaction(self.db_file, immediate=True) as conn:
            if conn.execute("SELECT 1 FROM members WHERE id = ?", (member_id,)).fetchone() is None:
                raise NotFoundError("Member not found")
            if count_outstanding(conn, member_id=member_id) > 0:
                logger.warning(f"Refused to delete member {member_id} with outstanding loans")
                raise ConflictError("Cannot delete member with active loans. Please return all books first.")
            conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
        logger.info(f"Member deleted: id={member_id}")

    # ------------------------- Loan history ------------------------- #
    def list_member_loans(self, member_id: str) -> List[Loan]:
        """Every loan of the member, newest first."""
        return self._member_loans(member_id, outstanding_only=False)

    def list_member_active_loans(self, member_id: str) -> List[Loan]:
        """Loans the member has not returned yet (active or overdue), newest first."""
        return self._member_loans(member_id, outstanding_only=True)

    def _member_loans(self, member_id: str, outstanding_only: bool) -> List[Loan]:
        sql = f"SELECT {JOINED_LOAN_COLUMNS} FROM {JOINED_LOAN_FROM} WHERE l.member_id = ?"
        params: list = [member_id]
        if outstanding_only:
            sql += " AND l.status IN (?, ?)"
            params.extend(OUTSTANDING_STATUSES)
        sql += " ORDER BY l.loaned_at DESC"

        with connection(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM members WHERE id = ?", (member_id,)).fetchone() is None:
                raise NotFoundError("Member not found")
            rows = conn.execute(sql, params).fetchall()
        return [Loan.from_row(row) for row in rows]

    @staticmethod
    def _email_taken(conn: sqlite3.Connection, email: str) -> bool:
        return conn.execute("SELECT 1 FROM members WHERE email = ?", (email,)).fetchone() is not None
