import logging
import sqlite3
from typing import List, Optional

from library_loans.book import Book
from library_loans.database import connection, new_id, to_iso, transaction, utcnow
from library_loans.errors import ConflictError, NotFoundError, ValidationError
from library_loans.loan import count_outstanding
from library_loans.locks import KeyedLock
from library_loans.validators import ISBNValidator, NumberValidator, TextValidator, escape_like

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, isbn, title, author, copies, created_at, updated_at"


class BookCatalog:
    """Manages the collection of books.

    Every copy-count change and every deletion runs under the per-book lock
    shared with the loan ledger, so the catalog can never drop a book's copies
    below the number of loans currently out on it.
    """

    def __init__(self, db_file: Optional[str] = None, locks: Optional[KeyedLock] = None) -> None:
        self.db_file = db_file
        self.locks = locks or KeyedLock()

    # ------------------------- Reads ------------------------- #
    def list_books(self) -> List[Book]:
        with connection(self.db_file) as conn:
            rows = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY title, created_at").fetchall()
        return [Book.from_row(row) for row in rows]

    def get_book(self, book_id: str) -> Book:
        with connection(self.db_file) as conn:
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise NotFoundError("Book not found")
        return Book.from_row(row)

    def get_book_by_isbn(self, isbn: str) -> Book:
        with connection(self.db_file) as conn:
            row = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books WHERE isbn = ?",
                (ISBNValidator.normalize_isbn(isbn),),
            ).fetchone()
        if row is None:
            raise NotFoundError("Book not found")
        return Book.from_row(row)

    def search_books(self, query: Optional[str]) -> List[Book]:
        """Case-insensitive substring search over title, author and ISBN."""
        if TextValidator.is_blank(query):
            raise ValidationError("Search query is required")
        pattern = f"%{escape_like(query.strip().casefold())}%"
        with connection(self.db_file) as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOK_COLUMNS} FROM books
                WHERE casefold(title) LIKE ? ESCAPE '\\' OR casefold(author) LIKE ? ESCAPE '\\'
                   OR casefold(isbn) LIKE ? ESCAPE '\\'
                ORDER BY title
                """,
                (pattern, pattern, pattern),
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    # ------------------------- Writes ------------------------- #
    def create_book(self, isbn: Optional[str], title: Optional[str], author: Optional[str],
                    copies: Optional[int] = None) -> Book:
        if any(TextValidator.is_blank(v) for v in (isbn, title, author)):
            raise ValidationError("ISBN, title, and author are required")
        copies = 1 if copies is None else NumberValidator.copies(copies)
        now = to_iso(utcnow())
        book = Book(new_id(), ISBNValidator.normalize_isbn(isbn), title, author, copies, now, now)

        try:
            with transaction(self.db_file, immediate=True) as conn:
                if self._isbn_taken(conn, book.isbn):
                    raise ConflictError("Book with this ISBN already exists")
                conn.execute(
                    f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (book.id, book.isbn, book.title, book.author, book.copies, book.created_at, book.updated_at),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Book with this ISBN already exists") from e
        except ConflictError:
            logger.warning(f"Rejected duplicate ISBN {book.isbn}")
            raise

        logger.info(f"Book created: id={book.id} isbn={book.isbn} copies={book.copies}")
        return book

    def update_book(self, book_id: str, *, isbn: Optional[str] = None, title: Optional[str] = None,
                    author: Optional[str] = None, copies: Optional[int] = None) -> Book:
        """Replace the provided fields; fields left as None keep their value."""
        changes = {}
        if isbn is not None:
            changes["isbn"] = ISBNValidator.normalize_isbn(TextValidator.require_text(isbn, "ISBN cannot be empty"))
        if title is not None:
            changes["title"] = TextValidator.require_text(title, "Title cannot be empty")
        if author is not None:
            changes["author"] = TextValidator.require_text(author, "Author cannot be empty")
        if copies is not None:
            changes["copies"] = NumberValidator.copies(copies)

        with self.locks.hold(book_id):
            try:
                with transaction(self.db_file, immediate=True) as conn:
                    row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
                    if row is None:
                        raise NotFoundError("Book not found")
                    book = Book.from_row(row)

                    if "isbn" in changes and changes["isbn"] != book.isbn and self._isbn_taken(conn, changes["isbn"]):
                        raise ConflictError("Book with this ISBN already exists")
                    if "copies" in changes:
                        out = count_outstanding(conn, book_id=book_id)
                        if changes["copies"] < out:
                            raise ConflictError(
                                f"Cannot reduce copies to {changes['copies']}: {out} copies are on loan"
                            )

                    for field, value in changes.items():
                        setattr(book, field, value)
                    book.updated_at = to_iso(utcnow())
                    conn.execute(
                        "UPDATE books SET isbn = ?, title = ?, author = ?, copies = ?, updated_at = ? WHERE id = ?",
                        (book.isbn, book.title, book.author, book.copies, book.updated_at, book_id),
                    )
            except sqlite3.IntegrityError as e:
                raise ConflictError("Book with this ISBN already exists") from e
            except ConflictError as e:
                logger.warning(f"Book update rejected for {book_id}: {e.message}")
                raise

        logger.info(f"Book updated: id={book_id} fields={sorted(changes)}")
        return book

    def delete_book(self, book_id: str) -> None:
        """Delete a book. Refused while any of its copies is on loan."""
        with self.locks.hold(book_id):
            with transaction(self.db_file, immediate=True) as conn:
                if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                    raise NotFoundError("Book not found")
                if count_outstanding(conn, book_id=book_id) > 0:
                    logger.warning(f"Refused to delete book {book_id} with outstanding loans")
                    raise ConflictError(
                        "Cannot delete book with active loans. Please wait until all copies are returned."
                    )
                conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        logger.info(f"Book deleted: id={book_id}")

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _isbn_taken(conn: sqlite3.Connection, isbn: str) -> bool:
        return conn.execute("SELECT 1 FROM books WHERE isbn = ?", (isbn,)).fetchone() is not None
