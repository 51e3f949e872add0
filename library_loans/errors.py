"""Error taxonomy shared by the catalog, the member registry and the loan ledger.

Each error carries the HTTP status the API layer answers with, so handlers
never have to guess how a failure should be rendered.
"""


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """A required field is missing or malformed."""
    status_code = 400


class ConflictError(LibraryError):
    """A uniqueness rule or a business rule rejected the operation."""
    status_code = 400


class NotFoundError(LibraryError):
    status_code = 404


class StoreError(LibraryError):
    """The underlying SQLite store failed."""
    status_code = 500
