from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

import categories as registry
from budget import BudgetTracker
from config import get_settings
from domain import Expense, UserContext
from errors import NotFoundError, ValidationError
from periods import local_now, parse_instant
from scheduler import SchedulerManager
from schemas import ExpenseIn, ExpensePatch, PreferencesIn
from store import DocumentStore, StoredDocument
from subscriptions import SnapshotStream, open_stream

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "COP"
DEFAULT_DISPLAY_NAME = "Usuario"

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_input(schema: Type[SchemaT], data: object) -> SchemaT:
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except SchemaError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()))
        message = first.get("msg", "Invalid input")
        raise ValidationError(f"{field}: {message}" if field else message) from exc


def _isoformat(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


class LedgerMirror:
    """Local, ordered copy of a user's expenses fed by a live query.

    Writes go straight to the store; the mirror never applies them locally.
    The written record becomes visible with the next snapshot emission.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        mode: Optional[str] = None,
        scheduler: Optional[SchedulerManager] = None,
        interval_secs: Optional[float] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.mode = mode or settings.live_query
        self.scheduler = scheduler
        self.interval_secs = interval_secs or settings.poll_interval_secs
        self.clock = clock
        self.expenses: tuple[Expense, ...] = ()
        self._current: Optional[SnapshotStream] = None

    def subscribe(
        self,
        ctx: UserContext,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> SnapshotStream:
        """Build a stream of full snapshots ordered by date, newest first.

        Only an unfiltered subscription updates ``self.expenses``. The stream
        must be opened (``await stream.open()``) before iterating.
        """
        full = since is None and limit is None
        stream: Optional[SnapshotStream] = None

        def to_snapshot(docs: list[StoredDocument]) -> tuple[Expense, ...]:
            snapshot = tuple(Expense.from_document(doc.id, doc.data) for doc in docs)
            if full and stream is self._current:
                self.expenses = snapshot
            return snapshot

        stream = open_stream(
            self.store,
            ctx.expenses_path,
            mode=self.mode,
            scheduler=self.scheduler,
            interval_secs=self.interval_secs,
            since=since,
            limit=limit,
            transform=to_snapshot,
        )
        if full:
            self._current = stream
            self.expenses = ()
        logger.info(f"ledger_subscribe: user={ctx.user_id} mode={self.mode}")
        return stream

    def reset(self) -> None:
        """Forget the mirrored snapshot, e.g. when the signed-in user changes."""
        self._current = None
        self.expenses = ()

    def _checked_date(self, value: Optional[datetime]) -> datetime:
        now = self.clock()
        if value is None:
            return now
        moment = parse_instant(value)
        if moment is None:
            raise ValidationError("Invalid expense date")
        if moment.date() > now.date():
            raise ValidationError("Expense date cannot be in the future")
        return moment

    async def create(self, ctx: UserContext, data: ExpenseIn | dict) -> str:
        payload = parse_input(ExpenseIn, data)
        document = {
            "amount": payload.amount,
            "category": payload.category_id,
            "note": payload.note,
            "date": _isoformat(self._checked_date(payload.date)),
            "createdAt": _isoformat(self.clock()),
        }
        expense_id = await self.store.add(ctx.expenses_path, document)
        logger.info(
            f"ledger_create: user={ctx.user_id} id={expense_id} amount={payload.amount}"
        )
        return expense_id

    async def update(
        self, ctx: UserContext, expense_id: str, patch: ExpensePatch | dict
    ) -> None:
        changes = parse_input(ExpensePatch, patch).model_dump(exclude_none=True)
        document: dict[str, object] = {}
        if "amount" in changes:
            document["amount"] = changes["amount"]
        if "category_id" in changes:
            document["category"] = changes["category_id"]
        if "note" in changes:
            document["note"] = changes["note"]
        if "date" in changes:
            document["date"] = _isoformat(self._checked_date(changes["date"]))
        try:
            await self.store.update(f"{ctx.expenses_path}/{expense_id}", document)
        except NotFoundError as exc:
            raise NotFoundError("Expense not found") from exc
        logger.info(
            f"ledger_update: user={ctx.user_id} id={expense_id} fields={sorted(document)}"
        )

    async def delete(self, ctx: UserContext, expense_id: str) -> None:
        existed = await self.store.delete(f"{ctx.expenses_path}/{expense_id}")
        if not existed:
            logger.info(f"ledger_delete: user={ctx.user_id} id={expense_id} already_gone")
            return
        logger.info(f"ledger_delete: user={ctx.user_id} id={expense_id}")

    def get(self, expense_id: str) -> Expense:
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        raise NotFoundError("Expense not found")


class CategoryService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def load(self, ctx: UserContext) -> list[dict]:
        doc = await self.store.get(ctx.categories_path)
        if not doc:
            return []
        custom = doc.get("custom") or []
        return [entry for entry in custom if isinstance(entry, dict)]

    async def _save(self, ctx: UserContext, custom: list[dict]) -> None:
        await self.store.set(ctx.categories_path, {"custom": custom})

    async def add(
        self,
        ctx: UserContext,
        name: str,
        icon: Optional[str] = None,
        current: Optional[Sequence[dict]] = None,
    ) -> tuple[dict, list[dict]]:
        if current is None:
            current = await self.load(ctx)
        category, updated = registry.add_custom(name, icon, current)
        await self._save(ctx, updated)
        return category, updated

    async def remove(
        self,
        ctx: UserContext,
        category_id: str,
        current: Optional[Sequence[dict]] = None,
    ) -> list[dict]:
        if current is None:
            current = await self.load(ctx)
        updated = registry.remove_custom(category_id, current)
        if len(updated) == len(current):
            logger.info(f"category_remove: user={ctx.user_id} id={category_id} absent")
            return updated
        await self._save(ctx, updated)
        logger.info(f"category_remove: user={ctx.user_id} id={category_id}")
        return updated


class BudgetService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def load(self, ctx: UserContext) -> float:
        doc = await self.store.get(ctx.root) or {}
        try:
            value = float(doc.get("budget") or 0)
        except (TypeError, ValueError):
            return 0.0
        return value if value > 0 else 0.0

    async def set(self, ctx: UserContext, amount: object) -> float:
        value = BudgetTracker.validate(amount)
        data: dict[str, object] = {"budget": value}
        if ctx.email:
            data["email"] = ctx.email
        await self.store.set(ctx.root, data, merge=True)
        logger.info(f"budget_set: user={ctx.user_id} amount={value}")
        return value


class ProfileService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def display_name(self, ctx: UserContext) -> str:
        doc = await self.store.get(ctx.root) or {}
        name = doc.get("displayName")
        if isinstance(name, str) and name.strip():
            return name
        if ctx.email and ctx.email.split("@")[0]:
            return ctx.email.split("@")[0]
        return DEFAULT_DISPLAY_NAME

    async def set_display_name(self, ctx: UserContext, name: str) -> str:
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Display name cannot be empty")
        data: dict[str, object] = {"displayName": clean_name}
        if ctx.email:
            data["email"] = ctx.email
        await self.store.set(ctx.root, data, merge=True)
        return clean_name


@dataclass(frozen=True)
class Preferences:
    notifications_enabled: bool = True
    currency: str = DEFAULT_CURRENCY


class PreferencesService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def load(self, ctx: UserContext) -> Preferences:
        doc = await self.store.get(ctx.preferences_path) or {}
        enabled = doc.get("notificationsEnabled")
        return Preferences(
            notifications_enabled=True if enabled is None else bool(enabled),
            currency=str(doc.get("currency") or DEFAULT_CURRENCY),
        )

    async def save(self, ctx: UserContext, data: PreferencesIn | dict) -> Preferences:
        payload = parse_input(PreferencesIn, data)
        changes: dict[str, object] = {}
        if payload.notifications_enabled is not None:
            changes["notificationsEnabled"] = payload.notifications_enabled
        if payload.currency is not None:
            changes["currency"] = payload.currency.upper()
        if changes:
            await self.store.set(ctx.preferences_path, changes, merge=True)
        return await self.load(ctx)
