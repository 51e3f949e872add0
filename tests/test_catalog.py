import pytest

from library_loans.errors import ConflictError, NotFoundError, ValidationError


def test_add_list_and_find(lib):
    assert lib.books.list_books() == []

    book = lib.books.create_book("9780199535675", "Ulysses", "James Joyce")

    assert book.copies == 1
    assert book.created_at == book.updated_at
    assert lib.books.get_book(book.id).title == "Ulysses"
    assert lib.books.get_book_by_isbn("9780199535675").id == book.id
    assert [b.isbn for b in lib.books.list_books()] == ["9780199535675"]


def test_fields_are_trimmed(lib):
    book = lib.books.create_book("  111 ", " Dune ", " Frank Herbert ", copies=2)
    assert (book.isbn, book.title, book.author, book.copies) == ("111", "Dune", "Frank Herbert", 2)
    assert lib.books.get_book_by_isbn(" 111").id == book.id


def test_create_requires_fields(lib):
    with pytest.raises(ValidationError, match="ISBN, title, and author are required"):
        lib.books.create_book("123", "", "Someone")
    with pytest.raises(ValidationError):
        lib.books.create_book(None, "Title", "Someone")


@pytest.mark.parametrize("copies", [-1, True, "3", 1.5])
def test_create_rejects_bad_copies(lib, copies):
    with pytest.raises(ValidationError, match="Copies"):
        lib.books.create_book("123", "Title", "Author", copies=copies)


def test_add_duplicate_isbn(lib):
    lib.books.create_book("1234567890", "Test Book", "Test Author")

    with pytest.raises(ConflictError, match="Book with this ISBN already exists"):
        lib.books.create_book("1234567890", "Other", "Someone")

    assert len(lib.books.list_books()) == 1


def test_list_is_ordered_by_title(lib):
    lib.books.create_book("2", "Zorba", "Kazantzakis")
    lib.books.create_book("1", "Anna Karenina", "Tolstoy")
    assert [b.title for b in lib.books.list_books()] == ["Anna Karenina", "Zorba"]


def test_lookups_not_found(lib):
    with pytest.raises(NotFoundError, match="Book not found"):
        lib.books.get_book("missing")
    with pytest.raises(NotFoundError):
        lib.books.get_book_by_isbn("000")


def test_update_book_partial(lib):
    book = lib.books.create_book("4445556667", "Original Title", "Original Author")

    updated = lib.books.update_book(book.id, title="Only Title Changed")
    assert updated.title == "Only Title Changed"
    assert updated.author == "Original Author"

    updated = lib.books.update_book(book.id, author="Only Author Changed", copies=4)
    assert updated.title == "Only Title Changed"
    assert updated.author == "Only Author Changed"
    assert updated.copies == 4

    stored = lib.books.get_book(book.id)
    assert stored.author == "Only Author Changed"
    assert stored.updated_at >= stored.created_at


def test_update_isbn_uniqueness(lib):
    first = lib.books.create_book("111", "First", "Author")
    lib.books.create_book("222", "Second", "Author")

    with pytest.raises(ConflictError, match="ISBN already exists"):
        lib.books.update_book(first.id, isbn="222")

    # Re-sending its own ISBN is not a clash.
    assert lib.books.update_book(first.id, isbn="111", title="First!").title == "First!"
    assert lib.books.update_book(first.id, isbn="333").isbn == "333"


def test_update_book_not_found_and_blank_fields(lib):
    with pytest.raises(NotFoundError):
        lib.books.update_book("nonexistent", title="New Title")

    book = lib.books.create_book("111", "Title", "Author")
    with pytest.raises(ValidationError):
        lib.books.update_book(book.id, title="   ")


def test_copies_cannot_drop_below_books_on_loan(lib):
    book = lib.books.create_book("111", "Popular", "Author", copies=2)
    readers = [lib.members.create_member(f"R{i}", f"r{i}@example.com") for i in range(2)]
    for reader in readers:
        lib.loans.create_loan(reader.id, book.id)

    with pytest.raises(ConflictError, match="on loan"):
        lib.books.update_book(book.id, copies=1)

    assert lib.books.update_book(book.id, copies=2).copies == 2
    assert lib.books.update_book(book.id, copies=5).copies == 5


def test_search_books(lib):
    lib.books.create_book("9780441013593", "Dune", "Frank Herbert")
    lib.books.create_book("9780141439518", "Pride and Prejudice", "Jane Austen")
    lib.books.create_book("100%", "Percent", "Someone")

    assert [b.title for b in lib.books.search_books("dUnE")] == ["Dune"]
    assert [b.title for b in lib.books.search_books("austen")] == ["Pride and Prejudice"]
    assert [b.title for b in lib.books.search_books("0141")] == ["Pride and Prejudice"]
    # LIKE wildcards in the query match literally
    assert [b.title for b in lib.books.search_books("%")] == ["Percent"]
    assert lib.books.search_books("nothing like it") == []


def test_search_folds_non_ascii_case(lib):
    lib.books.create_book("222", "Über Alles", "Émile Zola")
    lib.books.create_book("333", "Straße", "Anon")

    assert [b.title for b in lib.books.search_books("über")] == ["Über Alles"]
    assert [b.title for b in lib.books.search_books("émile")] == ["Über Alles"]
    assert [b.title for b in lib.books.search_books("STRASSE")] == ["Straße"]


def test_search_requires_query(lib):
    with pytest.raises(ValidationError, match="Search query is required"):
        lib.books.search_books("")
    with pytest.raises(ValidationError):
        lib.books.search_books(None)


def test_delete_book(lib):
    book = lib.books.create_book("123", "Test", "Author")
    lib.books.delete_book(book.id)

    with pytest.raises(NotFoundError):
        lib.books.get_book(book.id)
    with pytest.raises(NotFoundError):
        lib.books.delete_book(book.id)


def test_delete_book_refused_while_on_loan(lib):
    book = lib.books.create_book("123", "Test", "Author")
    member = lib.members.create_member("Reader", "reader@example.com")
    loan = lib.loans.create_loan(member.id, book.id)

    with pytest.raises(ConflictError, match="Cannot delete book with active loans"):
        lib.books.delete_book(book.id)

    lib.loans.return_loan(loan.id)
    lib.books.delete_book(book.id)
    assert lib.books.list_books() == []
    # The returned loan keeps its reference but loses the summary
    assert lib.loans.get_loan(loan.id).book is None
