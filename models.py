from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Document(Base, TimestampMixin):
    """One document of the per-user store, addressed by a slash path.

    ``users/{uid}`` holds the profile, ``users/{uid}/expenses/{id}`` the
    ledger and ``users/{uid}/settings/{name}`` the settings documents.
    The autoincrement ``id`` doubles as the insertion order used to break
    ties between documents with the same ``order_key``.
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    collection: Mapped[str] = mapped_column(String(255), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(128), nullable=False)
    path: Mapped[str] = mapped_column(String(400), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    order_key: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        UniqueConstraint("path", name="uq_documents_path"),
        Index("ix_documents_collection_order", "collection", "order_key"),
    )
