"""Reactive orchestration of the aggregation views.

``Dashboard`` owns the per-user state the views depend on (ledger snapshot,
custom categories, budget, selected period) and rebuilds the whole
``AggregateView`` whenever one of them changes. Each identity change starts a
new generation; anything still running for an older generation is dropped
instead of being applied.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

import categories as registry
from config import get_settings
from domain import Expense, UserContext
from errors import IdentityRequiredError, PersistenceError
from identity import IdentityProvider
from metrics import AggregateView, build_view, empty_view
from periods import PeriodKind, coerce_kind, local_now
from scheduler import SchedulerManager
from schemas import ExpenseIn, ExpensePatch, PreferencesIn
from services import (
    BudgetService,
    CategoryService,
    LedgerMirror,
    Preferences,
    PreferencesService,
    ProfileService,
)
from store import DocumentStore
from subscriptions import SnapshotStream

logger = logging.getLogger(__name__)

ViewListener = Callable[[AggregateView], None]


class Dashboard:
    def __init__(
        self,
        store: DocumentStore,
        *,
        ledger: Optional[LedgerMirror] = None,
        scheduler: Optional[SchedulerManager] = None,
        mode: Optional[str] = None,
        clock: Callable[[], datetime] = local_now,
        recent_limit: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.clock = clock
        self.ledger = ledger or LedgerMirror(
            store, mode=mode, scheduler=scheduler, clock=clock
        )
        self.categories = CategoryService(store)
        self.budgets = BudgetService(store)
        self.profiles = ProfileService(store)
        self.preferences = PreferencesService(store)
        self.recent_limit = recent_limit or settings.recent_limit

        self.ctx: Optional[UserContext] = None
        self.period = PeriodKind.month
        self.snapshot: tuple[Expense, ...] = ()
        self.custom_categories: list[dict] = []
        self.budget = 0.0
        self.view: AggregateView = empty_view(self.period)
        self.last_error: Optional[PersistenceError] = None

        self._generation = 0
        self._stream: Optional[SnapshotStream] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._updated = asyncio.Event()
        self._loaded = asyncio.Event()
        self._state_ready = False
        self._listeners: list[ViewListener] = []
        self._detach_identity: Optional[Callable[[], None]] = None
        self._switch_task: Optional[asyncio.Future] = None

    # -- identity -----------------------------------------------------------

    def attach(self, identity: IdentityProvider) -> None:
        """Follow ``identity``; must be called from inside the event loop."""
        self._detach_identity = identity.add_listener(self._on_identity)
        if identity.current is not None:
            self._on_identity(identity.current)

    def _on_identity(self, ctx: Optional[UserContext]) -> None:
        task = asyncio.ensure_future(self.switch_user(ctx))
        task.add_done_callback(self._log_switch_failure)
        self._switch_task = task

    async def settled(self) -> None:
        """Wait for the identity switch triggered last, re-raising its failure."""
        task = self._switch_task
        if task is not None and not task.cancelled():
            await task

    @staticmethod
    def _log_switch_failure(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"dashboard_switch_failed: error={exc}")

    async def switch_user(self, ctx: Optional[UserContext]) -> None:
        self._teardown()
        self._generation += 1
        generation = self._generation
        loaded = asyncio.Event()
        self._loaded = loaded
        self._state_ready = False
        self.ctx = ctx
        self.snapshot = ()
        self.custom_categories = []
        self.budget = 0.0
        self.last_error = None
        self._recompute()
        if ctx is None:
            loaded.set()
            logger.info("dashboard_reset: user=None")
            return

        try:
            custom, budget = await asyncio.gather(
                self.categories.load(ctx), self.budgets.load(ctx)
            )
        except PersistenceError as exc:
            if generation == self._generation:
                self.last_error = exc
                self._recompute()
            raise
        finally:
            loaded.set()
        if generation != self._generation:
            return
        self.custom_categories = custom
        self.budget = budget
        self._state_ready = True

        stream = self.ledger.subscribe(ctx)
        stream.add_error_listener(
            lambda exc: self._on_stream_error(generation, exc)
        )
        self._stream = stream
        await stream.open()
        if generation != self._generation:
            stream.close()
            return
        self._pump_task = asyncio.create_task(self._pump(stream, generation))
        self._recompute()
        logger.info(f"dashboard_ready: user={ctx.user_id}")

    async def _pump(self, stream: SnapshotStream, generation: int) -> None:
        async for snapshot in stream:
            if generation != self._generation:
                break
            self.snapshot = snapshot
            self.last_error = None
            self._recompute()

    def _on_stream_error(self, generation: int, exc: PersistenceError) -> None:
        if generation != self._generation:
            return
        self.last_error = exc
        self._recompute()

    def _teardown(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        self._pump_task = None
        self.ledger.reset()

    async def close(self) -> None:
        if self._detach_identity is not None:
            self._detach_identity()
            self._detach_identity = None
        self._teardown()
        self._generation += 1
        self.ctx = None

    # -- views --------------------------------------------------------------

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _recompute(self) -> None:
        if self.ctx is None:
            view = empty_view(self.period)
        else:
            view = build_view(
                self.snapshot,
                self.custom_categories,
                self.period,
                self.budget,
                self.clock(),
                recent_limit=self.recent_limit,
            )
        if self.last_error is not None:
            view = replace(view, error=str(self.last_error))
        self.view = view
        event, self._updated = self._updated, asyncio.Event()
        event.set()
        for listener in list(self._listeners):
            listener(view)

    def refresh(self) -> AggregateView:
        """Rebuild against the current clock; scheduled right after midnight."""
        self._recompute()
        return self.view

    async def wait_until(
        self, predicate: Callable[[AggregateView], bool], timeout: float = 5.0
    ) -> AggregateView:
        async def _wait() -> AggregateView:
            while not predicate(self.view):
                await self._updated.wait()
            return self.view

        return await asyncio.wait_for(_wait(), timeout)

    def category_list(self) -> list[registry.CategoryView]:
        return registry.merged(self.custom_categories)

    def set_period(self, period: object) -> AggregateView:
        self.period = coerce_kind(period)
        self._recompute()
        return self.view

    # -- intents ------------------------------------------------------------

    def _require_ctx(self) -> UserContext:
        if self.ctx is None:
            raise IdentityRequiredError("No signed-in user")
        return self.ctx

    async def _loaded_ctx(self) -> tuple[UserContext, int, Optional[list[dict]]]:
        """Signed-in user once their categories and budget are loaded.

        The custom list is None when it could not be loaded for this
        generation, so the category service reads the stored one instead.
        """
        ctx = self._require_ctx()
        generation = self._generation
        await self._loaded.wait()
        if generation == self._generation and self._state_ready:
            return ctx, generation, self.custom_categories
        return ctx, generation, None

    async def set_budget(self, amount: object) -> float:
        ctx, generation, _ = await self._loaded_ctx()
        value = await self.budgets.set(ctx, amount)
        if generation == self._generation:
            self.budget = value
            self._recompute()
        return value

    async def add_category(self, name: str, icon: Optional[str] = None) -> dict:
        ctx, generation, current = await self._loaded_ctx()
        category, updated = await self.categories.add(ctx, name, icon, current)
        if generation == self._generation:
            self.custom_categories = updated
            self._recompute()
        return category

    async def remove_category(self, category_id: str) -> list[dict]:
        ctx, generation, current = await self._loaded_ctx()
        updated = await self.categories.remove(ctx, category_id, current)
        if generation == self._generation:
            self.custom_categories = updated
            self._recompute()
        return updated

    def expense(self, expense_id: str) -> Expense:
        self._require_ctx()
        return self.ledger.get(expense_id)

    async def create_expense(self, data: ExpenseIn | dict) -> str:
        return await self.ledger.create(self._require_ctx(), data)

    async def update_expense(self, expense_id: str, patch: ExpensePatch | dict) -> None:
        await self.ledger.update(self._require_ctx(), expense_id, patch)

    async def delete_expense(self, expense_id: str) -> None:
        await self.ledger.delete(self._require_ctx(), expense_id)

    async def display_name(self) -> str:
        return await self.profiles.display_name(self._require_ctx())

    async def set_display_name(self, name: str) -> str:
        return await self.profiles.set_display_name(self._require_ctx(), name)

    async def load_preferences(self) -> Preferences:
        return await self.preferences.load(self._require_ctx())

    async def save_preferences(self, data: PreferencesIn | dict) -> Preferences:
        return await self.preferences.save(self._require_ctx(), data)
