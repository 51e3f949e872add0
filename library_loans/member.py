from __future__ import annotations

from typing import Any, Mapping


class Member:
    """A registered library member. The email is stored lowercased."""

    def __init__(self, id: str, name: str, email: str, joined_at: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.joined_at = joined_at
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} <{self.email}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "joinedAt": self.joined_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Member":
        return Member(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            joined_at=row["joined_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
