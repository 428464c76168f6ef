from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from errors import NotFoundError, PersistenceError
from models import Document
from periods import parse_instant

logger = logging.getLogger(__name__)

ORDER_FIELD = "date"

ChangeListener = Callable[[str], None]


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: dict


def _split_path(path: str) -> tuple[str, str]:
    parts = [p for p in path.split("/") if p]
    if not parts or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def _user_of(path: str) -> Optional[str]:
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 2 and parts[0] == "users":
        return parts[1]
    return None


def _order_key(value: object) -> Optional[str]:
    moment = parse_instant(value)
    if moment is None:
        return None
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%f")


class DocumentStore(ABC):
    """Per-user document store with live-query notifications.

    Documents are addressed by slash paths (``users/{uid}/expenses/{id}``);
    collections are the path minus the last segment. Every call may suspend
    and failures of the backend surface as ``PersistenceError``.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[ChangeListener]] = {}

    @abstractmethod
    async def get(self, path: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        ...

    @abstractmethod
    async def add(self, collection: str, data: dict) -> str:
        ...

    @abstractmethod
    async def update(self, path: str, data: dict) -> None:
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Remove a document; returns False when it did not exist."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        """Documents of ``collection`` ordered by ``date`` descending."""

    def add_listener(self, collection: str, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.setdefault(collection, []).append(listener)

        def remove() -> None:
            listeners = self._listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

        return remove

    def _notify(self, collection: str) -> None:
        for listener in list(self._listeners.get(collection, [])):
            listener(collection)


class SQLDocumentStore(DocumentStore):
    def __init__(self, session_factory: sessionmaker) -> None:
        super().__init__()
        self.session_factory = session_factory

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            logger.error(f"store_error: op={func.__name__} error={exc}")
            raise PersistenceError("The document store is unavailable") from exc

    def _find(self, session: Session, path: str) -> Optional[Document]:
        return session.scalar(select(Document).where(Document.path == path))

    async def get(self, path: str) -> Optional[dict]:
        def _get(path: str) -> Optional[dict]:
            with session_scope(self.session_factory) as session:
                doc = self._find(session, path)
                return dict(doc.data) if doc else None

        return await self._run(_get, path)

    async def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        collection, doc_id = _split_path(path)

        def _set(path: str, data: dict) -> None:
            with session_scope(self.session_factory) as session:
                doc = self._find(session, path)
                if doc is None:
                    doc = Document(
                        user_id=_user_of(path),
                        collection=collection,
                        doc_id=doc_id,
                        path=path,
                        data={},
                    )
                    session.add(doc)
                payload = {**doc.data, **data} if merge else dict(data)
                doc.data = payload
                doc.order_key = _order_key(payload.get(ORDER_FIELD))

        await self._run(_set, path, data)
        self._notify(collection)

    async def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex[:20]
        path = f"{collection}/{doc_id}"

        def _add(path: str, data: dict) -> None:
            with session_scope(self.session_factory) as session:
                session.add(
                    Document(
                        user_id=_user_of(path),
                        collection=collection,
                        doc_id=doc_id,
                        path=path,
                        data=dict(data),
                        order_key=_order_key(data.get(ORDER_FIELD)),
                    )
                )

        await self._run(_add, path, data)
        self._notify(collection)
        return doc_id

    async def update(self, path: str, data: dict) -> None:
        collection, _ = _split_path(path)

        def _update(path: str, data: dict) -> bool:
            with session_scope(self.session_factory) as session:
                doc = self._find(session, path)
                if doc is None:
                    return False
                payload = {**doc.data, **data}
                doc.data = payload
                doc.order_key = _order_key(payload.get(ORDER_FIELD))
                return True

        if not await self._run(_update, path, data):
            raise NotFoundError("Document not found")
        self._notify(collection)

    async def delete(self, path: str) -> bool:
        collection, _ = _split_path(path)

        def _delete(path: str) -> bool:
            with session_scope(self.session_factory) as session:
                doc = self._find(session, path)
                if doc is None:
                    return False
                session.delete(doc)
                return True

        existed = await self._run(_delete, path)
        if existed:
            self._notify(collection)
        return existed

    async def query(
        self,
        collection: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[StoredDocument]:
        def _query() -> list[StoredDocument]:
            stmt = (
                select(Document)
                .where(Document.collection == collection)
                .order_by(Document.order_key.desc(), Document.id.asc())
            )
            if since is not None:
                stmt = stmt.where(Document.order_key >= _order_key(since))
            if limit is not None:
                stmt = stmt.limit(limit)
            with session_scope(self.session_factory) as session:
                return [
                    StoredDocument(doc.doc_id, dict(doc.data))
                    for doc in session.scalars(stmt).all()
                ]

        return await self._run(_query)
