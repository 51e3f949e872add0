import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

from library_loans.config import settings
from library_loans.errors import StoreError

# Make sure .env is loaded before LIBRARY_DB_FILE is read below, whatever the import order.
load_dotenv()

logger = logging.getLogger(__name__)

# Fixed width so that string order equals time order inside SQL comparisons.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def resolve_database_file(db_file: Optional[str] = None) -> str:
    """Return the database file to use.

    Priority:
    1) an explicit ``db_file`` argument
    2) the LIBRARY_DB_FILE environment variable, read at call time
    3) the configured default
    """
    return db_file or os.environ.get("LIBRARY_DB_FILE") or settings.database_file


# ------------------------- Timestamps ------------------------- #
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime as a UTC timestamp. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    # strftime does not zero-pad years below 1000 on every platform.
    return f"{value.year:04d}-" + value.strftime("%m-%dT%H:%M:%S.%fZ")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def new_id() -> str:
    """Opaque identifier for a freshly inserted record."""
    return uuid.uuid4().hex


# ------------------------- Connections ------------------------- #
def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if isinstance(value, str) else value


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a new connection to the SQLite database.

    The connection runs in autocommit mode, so every multi-statement
    write has to open its own transaction through ``transaction()``.
    """
    try:
        conn = sqlite3.connect(
            resolve_database_file(db_file),
            timeout=settings.database_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
    except sqlite3.Error as e:
        logger.error(f"Could not open database: {e}")
        raise StoreError(f"Could not open database: {e}") from e
    conn.row_factory = sqlite3.Row
    # Unicode-aware case folding for searches; LIKE alone folds ASCII only.
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    return conn


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Connection for single-statement reads and writes."""
    conn = get_db_connection(db_file)
    try:
        yield conn
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as e:
        logger.error(f"Database error: {e}")
        raise StoreError(f"Database error: {e}") from e
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements in one transaction.

    ``immediate=True`` takes SQLite's write lock up front (BEGIN IMMEDIATE),
    so a read-check-write sequence cannot interleave with another writer,
    even one in a different process.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    except sqlite3.IntegrityError:
        # Constraint violations are business conflicts; callers translate them.
        raise
    except sqlite3.Error as e:
        logger.error(f"Database transaction failed: {e}")
        raise StoreError(f"Database error: {e}") from e
    finally:
        conn.close()


# ------------------------- Schema ------------------------- #
def create_tables(db_file: Optional[str] = None) -> None:
    """Create the required tables if they do not exist yet."""
    with connection(db_file) as conn:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                isbn TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                copies INTEGER NOT NULL DEFAULT 1 CHECK(copies >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                joined_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        # member_id / book_id are plain references: deleting a member or a book
        # never cascades into the ledger.
        conn.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                member_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                loaned_at TEXT NOT NULL,
                due_at TEXT NOT NULL,
                returned_at TEXT,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'returned', 'overdue')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK((status = 'returned') = (returned_at IS NOT NULL))
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_loans_member_book ON loans(member_id, book_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_loans_status ON loans(status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_loans_due_at ON loans(due_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_members_joined_at ON members(joined_at)")
        # At most one outstanding loan per (member, book).
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_loans_one_outstanding
            ON loans(member_id, book_id)
            WHERE status IN ('active', 'overdue')
        """)


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug(f"Database ready at {resolve_database_file(db_file)}")
