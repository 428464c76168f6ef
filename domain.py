from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from periods import parse_instant


@dataclass(frozen=True)
class UserContext:
    user_id: str
    email: Optional[str] = None

    @property
    def root(self) -> str:
        return f"users/{self.user_id}"

    @property
    def expenses_path(self) -> str:
        return f"{self.root}/expenses"

    @property
    def categories_path(self) -> str:
        return f"{self.root}/settings/categories"

    @property
    def preferences_path(self) -> str:
        return f"{self.root}/settings/preferences"


@dataclass(frozen=True)
class Expense:
    id: str
    amount: float
    category_id: str
    note: str
    date: Optional[datetime]  # None when the stored value is malformed
    created_at: Optional[datetime]

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Expense":
        try:
            amount = float(data.get("amount", 0) or 0)
        except (TypeError, ValueError):
            amount = 0.0
        return cls(
            id=doc_id,
            amount=amount,
            category_id=str(data.get("category") or ""),
            note=str(data.get("note") or ""),
            date=parse_instant(data.get("date")),
            created_at=parse_instant(data.get("createdAt")),
        )
