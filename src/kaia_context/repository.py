"""
Repositories that announce their mutations.

ChangeEmitter is the capability every storage repository carries: once a
create/update/delete has committed, the repository builds a ChangeEvent and
hands it to the shared ChangeBus, then to any directly attached observers.
Commit and publish are separate, sequenced steps; nothing is published for a
failed commit, and a failed publish never undoes or fails the mutation.

EntityRepository is the SQLite reference repository for domain entities
(tasks, events, reminders, ...) stored as JSON documents.
"""
from __future__ import annotations

import asyncio
import functools
import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar, Union

from .errors import EntityNotFoundError, StoreError
from .kernel.bus import ChangeBus, ChangeHandler
from .kernel.schema import ChangeEvent, ChangeKind, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

Observer = Union[ChangeHandler, Any]


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _as_handler(observer: Observer) -> ChangeHandler:
    """Observers are callables or objects with on_repository_event()."""
    method = getattr(observer, "on_repository_event", None)
    if callable(method):
        return method
    if callable(observer):
        return observer
    raise TypeError(f"Observer {observer!r} is neither callable nor has on_repository_event()")


class ChangeEmitter:
    """
    Mixin: post-commit change emission plus direct observers.

    Observers are held as subscriptions on a repository-private bus, so they
    get the same concurrent, failure-isolated delivery as bus subscribers.
    """

    entity_kind: str = "GENERIC"

    def _init_emitter(self, bus: Optional[ChangeBus], await_delivery: bool = True) -> None:
        """
        Args:
            bus: Shared bus (may be None for observer-only repositories)
            await_delivery: When False, publishing is scheduled in the
                background and drain() waits for it
        """
        self._bus = bus
        self._observers = ChangeBus()
        self._await_delivery = await_delivery
        self._pending: Set["asyncio.Task[None]"] = set()

    def attach(self, observer: Observer) -> None:
        handler = _as_handler(observer)
        for kind in ChangeKind:
            self._observers.subscribe(kind, handler)

    def detach(self, observer: Observer) -> None:
        handler = _as_handler(observer)
        for kind in ChangeKind:
            self._observers.unsubscribe(kind, handler)

    async def _after_commit(self, event: ChangeEvent) -> None:
        """Post-commit step: publish, never raising into the mutation."""
        if self._await_delivery:
            await self._deliver(event)
            return
        task = asyncio.ensure_future(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: ChangeEvent) -> None:
        try:
            if self._bus is not None:
                await self._bus.publish(event)
            await self._observers.publish(event)
        except Exception:
            logger.exception(
                "Publishing %s for %s %s failed; mutation kept",
                event.kind.value,
                event.entity_kind,
                event.entity_id,
            )

    async def drain(self) -> None:
        """Wait for background deliveries scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _change(
        self,
        kind: ChangeKind,
        entity_id: str,
        owner_id: str,
        payload: Optional[Dict[str, Any]],
        entity_kind: Optional[str] = None,
    ) -> ChangeEvent:
        return ChangeEvent(
            kind=kind,
            entity_kind=entity_kind or self.entity_kind,
            entity_id=entity_id,
            owner_id=owner_id,
            payload=payload,
        )


@dataclass
class EntityRecord:
    id: str
    kind: str
    owner_id: str
    data: Dict[str, Any]
    created_at: str
    updated_at: str


class EntityRepository(ChangeEmitter):
    """SQLite repository for domain entities, emitting ChangeEvents."""

    def __init__(
        self,
        path: str,
        bus: Optional[ChangeBus] = None,
        await_delivery: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._path = path
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._closed = False
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()
        self._init_emitter(bus, await_delivery)

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                data_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_entities_owner_kind
            ON entities(owner_id, kind)
            """
        )
        self._conn.commit()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(functools.partial(self._locked, fn, *args))

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            if self._closed:
                raise StoreError(f"{fn.__name__} failed: {self._path} is closed")
            try:
                return fn(*args)
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"{fn.__name__} failed: {exc}") from exc

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> EntityRecord:
        return EntityRecord(
            id=row["id"],
            kind=row["kind"],
            owner_id=row["owner_id"],
            data=json.loads(row["data_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _select(self, entity_id: str) -> Optional[EntityRecord]:
        cur = self._conn.cursor()
        cur.execute("SELECT * FROM entities WHERE id = ?", (entity_id,))
        row = cur.fetchone()
        return self._row_to_record(row) if row else None

    # =========================================================================
    # Mutations (commit, then emit)
    # =========================================================================

    async def create(
        self,
        kind: Any,
        owner_id: str,
        data: Dict[str, Any],
        entity_id: Optional[str] = None,
    ) -> EntityRecord:
        kind = getattr(kind, "value", kind)
        entity_id = entity_id or f"{kind.lower()}-{uuid.uuid4()}"
        record = await self._run(self._commit_create, entity_id, kind, owner_id, data)
        await self._after_commit(
            self._change(ChangeKind.CREATE, record.id, record.owner_id, record.data, record.kind)
        )
        return record

    def _commit_create(
        self, entity_id: str, kind: str, owner_id: str, data: Dict[str, Any]
    ) -> EntityRecord:
        now = self._clock().isoformat()
        self._conn.execute(
            """
            INSERT INTO entities (id, kind, owner_id, data_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (entity_id, kind, owner_id, json.dumps(data, default=_json_default), now, now),
        )
        self._conn.commit()
        record = self._select(entity_id)
        assert record is not None
        return record

    async def update(self, entity_id: str, data: Dict[str, Any]) -> EntityRecord:
        """
        Merge `data` into the stored document.

        Raises:
            EntityNotFoundError: no entity with that id (nothing is emitted)
        """
        record = await self._run(self._commit_update, entity_id, data)
        await self._after_commit(
            self._change(ChangeKind.UPDATE, record.id, record.owner_id, record.data, record.kind)
        )
        return record

    def _commit_update(self, entity_id: str, data: Dict[str, Any]) -> EntityRecord:
        existing = self._select(entity_id)
        if existing is None:
            raise EntityNotFoundError(entity_id)
        merged = {**existing.data, **data}
        self._conn.execute(
            "UPDATE entities SET data_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(merged, default=_json_default), self._clock().isoformat(), entity_id),
        )
        self._conn.commit()
        record = self._select(entity_id)
        assert record is not None
        return record

    async def delete(self, entity_id: str) -> None:
        """
        Raises:
            EntityNotFoundError: no entity with that id (nothing is emitted)
        """
        record = await self._run(self._commit_delete, entity_id)
        await self._after_commit(
            self._change(ChangeKind.DELETE, record.id, record.owner_id, None, record.kind)
        )

    def _commit_delete(self, entity_id: str) -> EntityRecord:
        existing = self._select(entity_id)
        if existing is None:
            raise EntityNotFoundError(entity_id)
        self._conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        self._conn.commit()
        return existing

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, entity_id: str) -> Optional[EntityRecord]:
        return await self._run(self._select, entity_id)

    async def list_by_owner(self, owner_id: str, kind: Optional[str] = None) -> List[EntityRecord]:
        return await self._run(self._list_by_owner, owner_id, getattr(kind, "value", kind))

    def _list_by_owner(self, owner_id: str, kind: Optional[str]) -> List[EntityRecord]:
        query = "SELECT * FROM entities WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if kind:
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY created_at"
        cur = self._conn.cursor()
        cur.execute(query, params)
        return [self._row_to_record(row) for row in cur.fetchall()]

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True
