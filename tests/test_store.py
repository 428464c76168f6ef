import asyncio
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from database import Base, build_engine, build_session_factory
from errors import NotFoundError, PersistenceError
from store import SQLDocumentStore


def _store(tmp_path) -> SQLDocumentStore:
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    Base.metadata.create_all(engine)
    return SQLDocumentStore(build_session_factory(engine))


def test_set_with_merge_keeps_other_fields(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        await store.set("users/u1", {"displayName": "Ana", "email": "ana@example.com"})
        await store.set("users/u1", {"budget": 500}, merge=True)
        merged = await store.get("users/u1")
        await store.set("users/u1", {"budget": 700})
        replaced = await store.get("users/u1")
        return merged, replaced

    merged, replaced = asyncio.run(scenario())

    assert merged == {"displayName": "Ana", "email": "ana@example.com", "budget": 500}
    assert replaced == {"budget": 700}


def test_get_missing_document_returns_none(tmp_path) -> None:
    store = _store(tmp_path)

    assert asyncio.run(store.get("users/nobody")) is None


def test_query_orders_by_date_descending_with_stable_ties(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        col = "users/u1/expenses"
        a = await store.add(col, {"date": "2024-01-05T10:00:00", "amount": 1})
        b = await store.add(col, {"date": "2024-01-07T10:00:00", "amount": 2})
        c = await store.add(col, {"date": "2024-01-05T10:00:00", "amount": 3})
        d = await store.add(col, {"date": "garbage", "amount": 4})
        everything = await store.query(col)
        recent = await store.query(col, since=datetime(2024, 1, 6))
        limited = await store.query(col, limit=2)
        return (a, b, c, d), everything, recent, limited

    (a, b, c, d), everything, recent, limited = asyncio.run(scenario())

    assert [doc.id for doc in everything] == [b, a, c, d]
    assert [doc.id for doc in recent] == [b]
    assert [doc.id for doc in limited] == [b, a]


def test_collections_are_isolated_per_user(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        await store.add("users/u1/expenses", {"date": "2024-01-05", "amount": 1})
        await store.add("users/u2/expenses", {"date": "2024-01-05", "amount": 2})
        return await store.query("users/u2/expenses")

    docs = asyncio.run(scenario())

    assert [doc.data["amount"] for doc in docs] == [2]


def test_update_missing_document_raises_not_found(tmp_path) -> None:
    store = _store(tmp_path)

    with pytest.raises(NotFoundError):
        asyncio.run(store.update("users/u1/expenses/missing", {"amount": 5}))


def test_delete_reports_whether_document_existed(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        doc_id = await store.add("users/u1/expenses", {"date": "2024-01-05"})
        first = await store.delete(f"users/u1/expenses/{doc_id}")
        second = await store.delete(f"users/u1/expenses/{doc_id}")
        return first, second

    assert asyncio.run(scenario()) == (True, False)


def test_listeners_hear_writes_to_their_collection_only(tmp_path) -> None:
    store = _store(tmp_path)
    heard: list[str] = []
    remove = store.add_listener("users/u1/expenses", heard.append)

    async def scenario():
        doc_id = await store.add("users/u1/expenses", {"date": "2024-01-05"})
        await store.update(f"users/u1/expenses/{doc_id}", {"amount": 3})
        await store.add("users/u2/expenses", {"date": "2024-01-05"})
        remove()
        await store.add("users/u1/expenses", {"date": "2024-01-06"})

    asyncio.run(scenario())

    assert heard == ["users/u1/expenses", "users/u1/expenses"]


def test_backend_failures_become_persistence_errors(tmp_path, monkeypatch) -> None:
    store = _store(tmp_path)

    def broken_factory():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "session_factory", broken_factory)

    with pytest.raises(PersistenceError):
        asyncio.run(store.get("users/u1"))
