from datetime import datetime, timedelta, timezone

import pytest

from library_loans.errors import ConflictError, NotFoundError, ValidationError
from library_loans.loan import LoanStatus


def test_create_member_normalizes_email(lib):
    member = lib.members.create_member(" Ada Lovelace ", "  Ada@Example.COM ")

    assert member.name == "Ada Lovelace"
    assert member.email == "ada@example.com"
    assert member.joined_at is not None
    assert lib.members.get_member(member.id).email == "ada@example.com"


def test_create_member_requires_fields(lib):
    with pytest.raises(ValidationError, match="Name and email are required"):
        lib.members.create_member("", "a@example.com")
    with pytest.raises(ValidationError, match="Name and email are required"):
        lib.members.create_member("Ada", None)
    with pytest.raises(ValidationError, match="Invalid email"):
        lib.members.create_member("Ada", "not-an-email")


def test_duplicate_email_is_case_insensitive(lib):
    lib.members.create_member("Ada", "ada@example.com")
    with pytest.raises(ConflictError, match="Member with this email already exists"):
        lib.members.create_member("Other Ada", "ADA@example.com")


def test_get_member_by_email(lib):
    member = lib.members.create_member("Ada", "ada@example.com")
    assert lib.members.get_member_by_email("Ada@Example.com").id == member.id

    with pytest.raises(NotFoundError, match="Member not found"):
        lib.members.get_member_by_email("nobody@example.com")
    with pytest.raises(NotFoundError):
        lib.members.get_member("missing")


def test_list_members_newest_first(lib):
    first = lib.members.create_member("First", "first@example.com")
    second = lib.members.create_member("Second", "second@example.com")
    assert [m.id for m in lib.members.list_members()] == [second.id, first.id]


def test_search_members(lib):
    lib.members.create_member("Grace Hopper", "grace@navy.mil")
    lib.members.create_member("Alan Turing", "alan@example.com")

    assert [m.name for m in lib.members.search_members("HOPPER")] == ["Grace Hopper"]
    assert [m.name for m in lib.members.search_members("example")] == ["Alan Turing"]
    with pytest.raises(ValidationError, match="Search query is required"):
        lib.members.search_members("  ")


def test_search_members_folds_non_ascii_case(lib):
    lib.members.create_member("Şule Yıldız", "sule@example.com")
    lib.members.create_member("Ørjan Ås", "orjan@example.com")

    assert [m.name for m in lib.members.search_members("şule")] == ["Şule Yıldız"]
    assert [m.name for m in lib.members.search_members("ørjan ås")] == ["Ørjan Ås"]


def test_update_member(lib):
    member = lib.members.create_member("Ada", "ada@example.com")
    other = lib.members.create_member("Bob", "bob@example.com")

    updated = lib.members.update_member(member.id, name="Ada King")
    assert (updated.name, updated.email) == ("Ada King", "ada@example.com")

    updated = lib.members.update_member(member.id, email="ADA.KING@example.com")
    assert updated.email == "ada.king@example.com"

    with pytest.raises(ConflictError, match="already exists"):
        lib.members.update_member(member.id, email="Bob@example.com")
    with pytest.raises(ValidationError):
        lib.members.update_member(member.id, name="")
    with pytest.raises(NotFoundError):
        lib.members.update_member("missing", name="X")

    assert lib.members.get_member(other.id).email == "bob@example.com"


def test_delete_member_guard(lib):
    member = lib.members.create_member("Ada", "ada@example.com")
    book = lib.books.create_book("111", "Notes", "Menabrea")
    loan = lib.loans.create_loan(member.id, book.id)

    with pytest.raises(ConflictError, match="Cannot delete member with active loans"):
        lib.members.delete_member(member.id)

    lib.loans.return_loan(loan.id)
    lib.members.delete_member(member.id)  # only returned loans left

    with pytest.raises(NotFoundError):
        lib.members.get_member(member.id)
    with pytest.raises(NotFoundError):
        lib.members.delete_member(member.id)


def test_delete_member_guard_covers_overdue_loans(lib):
    member = lib.members.create_member("Ada", "ada@example.com")
    book = lib.books.create_book("111", "Notes", "Menabrea")
    lib.loans.create_loan(member.id, book.id, due_at=datetime.now(timezone.utc) - timedelta(days=2))
    lib.loans.list_overdue()

    with pytest.raises(ConflictError):
        lib.members.delete_member(member.id)


def test_member_loan_history(lib):
    member = lib.members.create_member("Ada", "ada@example.com")
    books = [lib.books.create_book(f"{i}", f"Book {i}", "Author") for i in range(3)]
    loans = [lib.loans.create_loan(member.id, b.id) for b in books]
    lib.loans.return_loan(loans[0].id)

    history = lib.members.list_member_loans(member.id)
    assert [loan.id for loan in history] == [loans[2].id, loans[1].id, loans[0].id]
    assert history[0].book["title"] == "Book 2"

    active = lib.members.list_member_active_loans(member.id)
    assert {loan.id for loan in active} == {loans[1].id, loans[2].id}
    assert all(loan.status is LoanStatus.ACTIVE for loan in active)


def test_member_loans_require_existing_member(lib):
    with pytest.raises(NotFoundError):
        lib.members.list_member_loans("missing")
    with pytest.raises(NotFoundError):
        lib.members.list_member_active_loans("missing")
