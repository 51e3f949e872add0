from __future__ import annotations

from typing import Any, Mapping


class Book:
    """Represents a single title in the catalog."""

    def __init__(self, id: str, isbn: str, title: str, author: str, copies: int = 1,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.isbn = isbn.strip()
        self.title = title.strip()
        self.author = author.strip()
        self.copies = copies
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "copies": self.copies,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Book":
        return Book(
            id=row["id"],
            isbn=row["isbn"],
            title=row["title"],
            author=row["author"],
            copies=row["copies"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
