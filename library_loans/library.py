import logging
from typing import Optional

from library_loans.catalog import BookCatalog
from library_loans.config import settings
from library_loans.database import initialize_database, resolve_database_file
from library_loans.ledger import LoanLedger
from library_loans.locks import KeyedLock
from library_loans.registry import MemberRegistry

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


class Library:
    """Wires the catalog, the member registry and the loan ledger to one database.

    The catalog and the ledger share a single per-book lock registry, which is
    what serializes loan creation against copy-count edits and book deletion.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = resolve_database_file(db_file)
        initialize_database(self.db_file)  # Make sure the tables exist

        locks = KeyedLock()
        self.books = BookCatalog(self.db_file, locks)
        self.members = MemberRegistry(self.db_file)
        self.loans = LoanLedger(self.db_file, locks)
        logger.info(f"Library opened on {self.db_file}")

    def close(self) -> None:
        """Compatibility helper for callers that manage a Library's lifetime.

        Connections are opened per operation, so there is nothing to release.
        """
        return None
