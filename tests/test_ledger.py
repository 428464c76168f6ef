import asyncio
from datetime import datetime

import pytest

from database import Base, build_engine, build_session_factory
from domain import UserContext
from errors import NotFoundError, ValidationError
from services import (
    BudgetService,
    CategoryService,
    LedgerMirror,
    PreferencesService,
    ProfileService,
)
from store import SQLDocumentStore

NOW = datetime(2024, 1, 31, 18, 0)
CTX = UserContext("u1", "ana@example.com")


def _store(tmp_path) -> SQLDocumentStore:
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    return SQLDocumentStore(build_session_factory(engine))


async def _next(stream, timeout: float = 2.0):
    return await asyncio.wait_for(stream.__anext__(), timeout)


def test_writes_appear_only_through_the_next_snapshot(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)
        stream = ledger.subscribe(CTX)
        await stream.open()
        initial = await _next(stream)

        expense_id = await ledger.create(
            CTX,
            {"amount": 12_000, "category_id": "food", "note": "Almuerzo",
             "date": datetime(2024, 1, 5, 12)},
        )
        assert ledger.expenses == ()
        after_create = await _next(stream)
        stream.close()
        return initial, expense_id, after_create, ledger.expenses

    initial, expense_id, after_create, mirrored = asyncio.run(scenario())

    assert initial == ()
    assert [e.id for e in after_create] == [expense_id]
    expense = after_create[0]
    assert expense.amount == 12_000
    assert expense.category_id == "food"
    assert expense.note == "Almuerzo"
    assert expense.date == datetime(2024, 1, 5, 12)
    assert expense.created_at == NOW
    assert mirrored == after_create


def test_snapshots_are_date_descending(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)
        ids = []
        for day in (3, 20, 11):
            ids.append(
                await ledger.create(CTX, {"amount": day, "date": datetime(2024, 1, day)})
            )
        stream = ledger.subscribe(CTX)
        await stream.open()
        snapshot = await _next(stream)
        stream.close()
        return ids, snapshot

    ids, snapshot = asyncio.run(scenario())

    assert [e.id for e in snapshot] == [ids[1], ids[2], ids[0]]


def test_create_defaults_date_to_now(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)
        expense_id = await ledger.create(CTX, {"amount": 1})
        return await store.get(f"{CTX.expenses_path}/{expense_id}")

    doc = asyncio.run(scenario())

    assert doc["date"] == "2024-01-31T18:00:00.000"
    assert doc["category"] == "food"
    assert doc["note"] == ""


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": 0},
        {"amount": -5},
        {"amount": 10, "note": "x" * 101},
        {"amount": 10, "date": datetime(2024, 2, 1, 0, 0)},
        {"amount": 10, "unexpected": True},
    ],
)
def test_create_rejects_invalid_input(tmp_path, payload) -> None:
    store = _store(tmp_path)
    ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)

    with pytest.raises(ValidationError):
        asyncio.run(ledger.create(CTX, payload))


def test_update_replaces_fields_in_place(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)
        expense_id = await ledger.create(
            CTX, {"amount": 10, "category_id": "food", "date": datetime(2024, 1, 2)}
        )
        await ledger.update(
            CTX, expense_id, {"amount": 25, "category_id": "bills", "note": "Luz"}
        )
        return await store.get(f"{CTX.expenses_path}/{expense_id}")

    doc = asyncio.run(scenario())

    assert doc["amount"] == 25
    assert doc["category"] == "bills"
    assert doc["note"] == "Luz"
    assert doc["date"] == "2024-01-02T00:00:00.000"
    assert doc["createdAt"] == "2024-01-31T18:00:00.000"


def test_update_unknown_expense_raises_not_found(tmp_path) -> None:
    store = _store(tmp_path)
    ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)

    with pytest.raises(NotFoundError):
        asyncio.run(ledger.update(CTX, "missing", {"amount": 3}))


def test_delete_is_idempotent(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        ledger = LedgerMirror(store, mode="push", clock=lambda: NOW)
        expense_id = await ledger.create(CTX, {"amount": 10})
        await ledger.delete(CTX, expense_id)
        await ledger.delete(CTX, expense_id)
        return await store.query(CTX.expenses_path)

    assert asyncio.run(scenario()) == []


def test_category_service_persists_custom_list(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        service = CategoryService(store)
        category, _ = await service.add(CTX, "Mascotas", "🐶")
        await service.add(CTX, "Viajes", None)
        stored = await store.get(CTX.categories_path)
        after_remove = await service.remove(CTX, category["id"])
        unchanged = await service.remove(CTX, "custom_0")
        return stored, after_remove, unchanged, await service.load(CTX)

    stored, after_remove, unchanged, loaded = asyncio.run(scenario())

    assert [c["name"] for c in stored["custom"]] == ["Mascotas", "Viajes"]
    assert [c["name"] for c in after_remove] == ["Viajes"]
    assert unchanged == after_remove
    assert loaded == after_remove


def test_budget_service_merges_into_profile(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        service = BudgetService(store)
        before = await service.load(CTX)
        await store.set(CTX.root, {"displayName": "Ana"})
        await service.set(CTX, 500_000)
        return before, await service.load(CTX), await store.get(CTX.root)

    before, after, profile = asyncio.run(scenario())

    assert before == 0
    assert after == 500_000
    assert profile == {"displayName": "Ana", "budget": 500_000, "email": "ana@example.com"}


def test_budget_service_rejects_non_positive(tmp_path) -> None:
    store = _store(tmp_path)

    with pytest.raises(ValidationError):
        asyncio.run(BudgetService(store).set(CTX, 0))


def test_profile_display_name_fallbacks(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        service = ProfileService(store)
        from_email = await service.display_name(CTX)
        anonymous = await service.display_name(UserContext("u2"))
        await service.set_display_name(CTX, "  Ana María ")
        return from_email, anonymous, await service.display_name(CTX)

    assert asyncio.run(scenario()) == ("ana", "Usuario", "Ana María")


def test_preferences_defaults_and_merge(tmp_path) -> None:
    store = _store(tmp_path)

    async def scenario():
        service = PreferencesService(store)
        defaults = await service.load(CTX)
        await service.save(CTX, {"notifications_enabled": False})
        updated = await service.save(CTX, {"currency": "usd"})
        return defaults, updated

    defaults, updated = asyncio.run(scenario())

    assert defaults.notifications_enabled is True
    assert defaults.currency == "COP"
    assert updated.notifications_enabled is False
    assert updated.currency == "USD"
