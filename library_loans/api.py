import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt

from library_loans.config import settings
from library_loans.database import connection, to_iso, utcnow
from library_loans.errors import LibraryError, StoreError
from library_loans.library import Library
from library_loans.loan import Loan

logger = logging.getLogger(__name__)

library = Library()

app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)

# Compress responses larger than 1KB
app.add_middleware(GZipMiddleware, minimum_size=1000)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Models ---
class BookCreateModel(BaseModel):
    isbn: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    copies: Optional[StrictInt] = Field(default=None, description="Defaults to 1")


class BookUpdateModel(BaseModel):
    isbn: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    copies: Optional[StrictInt] = None


class MemberCreateModel(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class MemberUpdateModel(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class LoanCreateModel(BaseModel):
    memberId: Optional[str] = None
    bookId: Optional[str] = None
    dueAt: Optional[datetime] = Field(default=None, description="Defaults to 14 days after the loan")


class LoanExtendModel(BaseModel):
    days: Optional[StrictInt] = Field(default=None, description="Defaults to 7")


# --- Helpers ---
def _envelope(data: Any = None, message: Optional[str] = None, count: Optional[int] = None) -> Dict[str, Any]:
    """Build the ``{success, message?, count?, data?}`` response body."""
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if count is not None:
        body["count"] = count
    if data is not None:
        body["data"] = data
    return body


def _list_envelope(items: List[Any]) -> Dict[str, Any]:
    return _envelope([i.to_dict() for i in items], count=len(items))


def _loans_envelope(loans: List[Loan]) -> Dict[str, Any]:
    now = utcnow()
    return _envelope([loan.to_dict(now) for loan in loans], count=len(loans))


# --- Error handlers ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if isinstance(exc, StoreError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        details.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"success": False, "message": "; ".join(details) or "Invalid request"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# --- Health ---
@app.get("/health")
def health():
    """Lightweight health check: one database round trip."""
    db_ok = True
    try:
        with connection(library.db_file) as conn:
            conn.execute("SELECT 1")
    except StoreError:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": to_iso(utcnow()),
        "environment": settings.environment,
        "db": db_ok,
    }


# --- Books ---
@app.get("/books")
def get_books():
    return _list_envelope(library.books.list_books())


@app.get("/books/search")
def search_books(query: Optional[str] = Query(None, description="Matches title, author or ISBN")):
    return _list_envelope(library.books.search_books(query))


@app.get("/books/isbn/{isbn}")
def get_book_by_isbn(isbn: str):
    return _envelope(library.books.get_book_by_isbn(isbn).to_dict())


@app.get("/books/{book_id}")
def get_book(book_id: str):
    return _envelope(library.books.get_book(book_id).to_dict())


@app.post("/books", status_code=201)
def create_book(payload: BookCreateModel):
    book = library.books.create_book(payload.isbn, payload.title, payload.author, payload.copies)
    return _envelope(book.to_dict(), message="Book created successfully")


@app.put("/books/{book_id}")
def update_book(book_id: str, update: BookUpdateModel):
    book = library.books.update_book(
        book_id, isbn=update.isbn, title=update.title, author=update.author, copies=update.copies
    )
    return _envelope(book.to_dict(), message="Book updated successfully")


@app.delete("/books/{book_id}")
def delete_book(book_id: str):
    library.books.delete_book(book_id)
    return _envelope(message="Book deleted successfully")


# --- Members ---
@app.get("/members")
def get_members():
    return _list_envelope(library.members.list_members())


@app.get("/members/search")
def search_members(query: Optional[str] = Query(None, description="Matches name or email")):
    return _list_envelope(library.members.search_members(query))


@app.get("/members/email/{email}")
def get_member_by_email(email: str):
    return _envelope(library.members.get_member_by_email(email).to_dict())


@app.get("/members/{member_id}")
def get_member(member_id: str):
    return _envelope(library.members.get_member(member_id).to_dict())


@app.get("/members/{member_id}/loans")
def get_member_loans(member_id: str):
    return _loans_envelope(library.members.list_member_loans(member_id))


@app.get("/members/{member_id}/active-loans")
def get_member_active_loans(member_id: str):
    return _loans_envelope(library.members.list_member_active_loans(member_id))


@app.post("/members", status_code=201)
def create_member(payload: MemberCreateModel):
    member = library.members.create_member(payload.name, payload.email)
    return _envelope(member.to_dict(), message="Member created successfully")


@app.put("/members/{member_id}")
def update_member(member_id: str, update: MemberUpdateModel):
    member = library.members.update_member(member_id, name=update.name, email=update.email)
    return _envelope(member.to_dict(), message="Member updated successfully")


@app.delete("/members/{member_id}")
def delete_member(member_id: str):
    library.members.delete_member(member_id)
    return _envelope(message="Member deleted successfully")


# --- Loans ---
@app.get("/loans")
def get_loans(status: Optional[str] = Query(None, description="active | returned | overdue")):
    return _loans_envelope(library.loans.list_loans(status))


@app.get("/loans/overdue")
def get_overdue_loans():
    """Marks active loans past their due date as overdue, then lists all overdue loans."""
    return _loans_envelope(library.loans.list_overdue())


@app.get("/loans/stats")
def get_loan_stats():
    return _envelope(library.loans.stats())


@app.get("/loans/{loan_id}")
def get_loan(loan_id: str):
    return _envelope(library.loans.get_loan(loan_id).to_dict())


@app.post("/loans", status_code=201)
def create_loan(payload: LoanCreateModel):
    loan = library.loans.create_loan(payload.memberId, payload.bookId, payload.dueAt)
    return _envelope(loan.to_dict(), message="Book loaned successfully")


@app.put("/loans/{loan_id}/return")
def return_loan(loan_id: str):
    loan = library.loans.return_loan(loan_id)
    return _envelope(loan.to_dict(), message="Book returned successfully")


@app.put("/loans/{loan_id}/extend")
def extend_loan(loan_id: str, payload: Optional[LoanExtendModel] = None):
    days = payload.days if payload is not None else None
    loan = library.loans.extend_loan(loan_id, days)
    extended_by = days if days is not None else library.loans.extension_days
    return _envelope(loan.to_dict(), message=f"Loan extended by {extended_by} days")


@app.delete("/loans/{loan_id}")
def delete_loan(loan_id: str):
    library.loans.delete_loan(loan_id)
    return _envelope(message="Loan deleted successfully")


@app.get("/")
def read_root():
    return {"name": settings.app_name, "version": settings.app_version, "docs": "/docs"}
