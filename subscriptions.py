"""Live queries over the document store.

A ``SnapshotStream`` is an async iterator of complete, ordered snapshots of
one collection. ``PushSnapshotStream`` re-queries when the store reports a
write; ``PollingSnapshotStream`` re-queries on a scheduler interval and only
emits when the result changed. Consumers cannot tell them apart.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional

from errors import PersistenceError
from scheduler import SchedulerManager
from store import DocumentStore, StoredDocument

logger = logging.getLogger(__name__)

_CLOSED = object()

Transform = Callable[[list[StoredDocument]], Any]
ErrorListener = Callable[[PersistenceError], None]


def _identity(docs: list[StoredDocument]) -> list[StoredDocument]:
    return docs


class SnapshotStream(ABC):
    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        transform: Optional[Transform] = None,
    ) -> None:
        self.store = store
        self.collection = collection
        self.since = since
        self.limit = limit
        self.transform = transform or _identity
        self.closed = False
        self.last_error: Optional[PersistenceError] = None
        self.emitted = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._error_listeners: list[ErrorListener] = []

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Called with each failed query; the stream keeps running."""
        self._error_listeners.append(listener)

    @abstractmethod
    async def open(self) -> "SnapshotStream":
        ...

    async def _fetch(self) -> Optional[list[StoredDocument]]:
        try:
            docs = await self.store.query(
                self.collection, since=self.since, limit=self.limit
            )
        except PersistenceError as exc:
            self.last_error = exc
            logger.warning(f"live_query_failed: collection={self.collection} error={exc}")
            for listener in list(self._error_listeners):
                listener(exc)
            return None
        self.last_error = None
        return docs

    def _emit(self, docs: list[StoredDocument]) -> None:
        if self.closed:
            return
        snapshot = self.transform(docs)
        self.emitted += 1
        self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)
        logger.info(f"live_query_closed: collection={self.collection}")

    def __aiter__(self) -> "SnapshotStream":
        return self

    async def __anext__(self) -> Any:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self.closed:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "SnapshotStream":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class PushSnapshotStream(SnapshotStream):
    def __init__(self, store: DocumentStore, collection: str, **kwargs) -> None:
        super().__init__(store, collection, **kwargs)
        self._dirty = asyncio.Event()
        self._remove_listener: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None

    async def open(self) -> "PushSnapshotStream":
        self._remove_listener = self.store.add_listener(
            self.collection, lambda _collection: self._dirty.set()
        )
        self._dirty.set()
        self._task = asyncio.create_task(self._pump())
        logger.info(f"live_query_opened: mode=push collection={self.collection}")
        return self

    async def _pump(self) -> None:
        # One fetch at a time keeps emissions in the order the store produced them.
        while not self.closed:
            await self._dirty.wait()
            self._dirty.clear()
            try:
                docs = await self._fetch()
                if docs is not None:
                    self._emit(docs)
            except Exception:
                logger.exception(f"live_query_pump_error: collection={self.collection}")

    def close(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        super().close()


class PollingSnapshotStream(SnapshotStream):
    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        *,
        scheduler: SchedulerManager,
        interval_secs: float,
        **kwargs,
    ) -> None:
        super().__init__(store, collection, **kwargs)
        self.scheduler = scheduler
        self.interval_secs = interval_secs
        self.job_id = f"poll:{collection}:{uuid.uuid4().hex[:8]}"
        self._fingerprint: Optional[str] = None
        self._lock = asyncio.Lock()

    async def open(self) -> "PollingSnapshotStream":
        await self.poll()
        self.scheduler.add_poll(self.job_id, self.poll, self.interval_secs)
        logger.info(f"live_query_opened: mode=poll collection={self.collection}")
        return self

    async def poll(self) -> bool:
        """Run the query once; returns True when a new snapshot was emitted."""
        async with self._lock:
            if self.closed:
                return False
            docs = await self._fetch()
            if docs is None:
                return False
            fingerprint = json.dumps(
                [[doc.id, doc.data] for doc in docs], sort_keys=True, default=str
            )
            if fingerprint == self._fingerprint:
                return False
            self._emit(docs)
            self._fingerprint = fingerprint
            return True

    def close(self) -> None:
        self.scheduler.remove(self.job_id)
        super().close()


def open_stream(
    store: DocumentStore,
    collection: str,
    *,
    mode: str = "push",
    scheduler: Optional[SchedulerManager] = None,
    interval_secs: float = 2.0,
    since: Optional[datetime] = None,
    limit: Optional[int] = None,
    transform: Optional[Transform] = None,
) -> SnapshotStream:
    """Build (but do not open) a stream for ``collection``."""
    if mode == "poll":
        if scheduler is None:
            raise ValueError("Polling live queries need a scheduler")
        return PollingSnapshotStream(
            store,
            collection,
            scheduler=scheduler,
            interval_secs=interval_secs,
            since=since,
            limit=limit,
            transform=transform,
        )
    if mode == "push":
        return PushSnapshotStream(
            store, collection, since=since, limit=limit, transform=transform
        )
    raise ValueError(f"Unsupported live query mode: {mode}")
