from __future__ import annotations

import asyncio
import functools
import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from ..errors import ContextNotFoundError, StoreError
from .schema import (
    ContextFilters,
    IntentionalContext,
    PriorityContext,
    RelationalContext,
    SpatialContext,
    TemporalContext,
    UnifiedContext,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

HIGH_PRIORITY_SCORE = 70

DIMENSION_MODELS: Dict[str, Any] = {
    "temporal": TemporalContext,
    "spatial": SpatialContext,
    "priority": PriorityContext,
    "relational": RelationalContext,
    "intentional": IntentionalContext,
}

UPDATABLE_FIELDS = frozenset(DIMENSION_MODELS) | {"context_score"}


class ContextStore(Protocol):
    """
    Persistence port for UnifiedContext records, keyed by entity_id.

    save() is an upsert: a new record starts at version 1; an existing one has
    its dimensions and score replaced, version incremented and last_updated
    stamped.
    """

    async def save(self, context: UnifiedContext) -> UnifiedContext: ...

    async def get(self, entity_id: str) -> Optional[UnifiedContext]: ...

    async def delete(self, entity_id: str) -> bool: ...

    async def update(self, entity_id: str, **changes: Any) -> UnifiedContext: ...

    async def query_by_owner(
        self, owner_id: str, filters: Optional[ContextFilters] = None
    ) -> List[UnifiedContext]: ...

    async def get_high_priority(self, owner_id: str, limit: int = 10) -> List[UnifiedContext]: ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...

    async def clean_old_contexts(self, days_old: int = 30) -> int: ...


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _iso(moment: datetime) -> str:
    # Fixed-width UTC so lexicographic order matches time order in SQL.
    return _aware(moment).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _validate_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Check a partial update before anything is written; returns typed values."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")

    validated: Dict[str, Any] = {}
    for name, value in changes.items():
        if name == "context_score":
            score = int(value)
            if not 0 <= score <= 100:
                raise ValueError(f"context_score must be within 0..100, got {score}")
            validated[name] = score
        else:
            validated[name] = DIMENSION_MODELS[name].model_validate(value)
    return validated


class _RetentionMixin:
    _clock: Callable[[], datetime]
    _high_priority_score: int = HIGH_PRIORITY_SCORE

    async def get_high_priority(self, owner_id: str, limit: int = 10) -> List[UnifiedContext]:
        """Contexts scoring at least the high-priority threshold, best first."""
        contexts = await self.query_by_owner(  # type: ignore[attr-defined]
            owner_id, ContextFilters(min_score=self._high_priority_score)
        )
        return contexts[:limit]

    async def clean_old_contexts(self, days_old: int = 30) -> int:
        cutoff = self._clock() - timedelta(days=days_old)
        return await self.delete_older_than(cutoff)  # type: ignore[attr-defined]


class SqliteContextStore(_RetentionMixin):
    """
    SQLite-backed Context Store.

    One connection shared across worker threads; every statement runs under
    a lock so the version bump in save() is atomic per entity.
    """

    def __init__(
        self,
        path: str,
        clock: Callable[[], datetime] = utcnow,
        high_priority_score: int = HIGH_PRIORITY_SCORE,
    ) -> None:
        self._path = path
        self._clock = clock
        self._high_priority_score = high_priority_score
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._closed = False
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    @property
    def path(self) -> str:
        return self._path

    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS contexts (
                entity_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                entity_kind TEXT NOT NULL,
                temporal_json TEXT NOT NULL,
                spatial_json TEXT NOT NULL,
                priority_json TEXT NOT NULL,
                relational_json TEXT NOT NULL,
                intentional_json TEXT NOT NULL,
                context_score INTEGER NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                last_updated TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_contexts_owner_score
            ON contexts(owner_id, context_score)
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_contexts_last_updated
            ON contexts(last_updated)
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

    def _row_to_context(self, row: sqlite3.Row) -> UnifiedContext:
        data: Dict[str, Any] = {
            name: json.loads(row[f"{name}_json"]) for name in DIMENSION_MODELS
        }
        return UnifiedContext(
            entity_id=row["entity_id"],
            owner_id=row["owner_id"],
            entity_kind=row["entity_kind"],
            context_score=row["context_score"],
            version=row["version"],
            created_at=row["created_at"],
            last_updated=row["last_updated"],
            **data,
        )

    def _select(self, entity_id: str) -> Optional[UnifiedContext]:
        cur = self._conn.cursor()
        cur.execute("SELECT * FROM contexts WHERE entity_id = ?", (entity_id,))
        row = cur.fetchone()
        return self._row_to_context(row) if row else None

    # =========================================================================
    # Port operations
    # =========================================================================

    async def save(self, context: UnifiedContext) -> UnifiedContext:
        return await self._run(self._save, context)

    def _save(self, context: UnifiedContext) -> UnifiedContext:
        now = _iso(self._clock())
        cur = self._conn.cursor()
        cur.execute(
            """
            INSERT INTO contexts (
                entity_id,
                owner_id,
                entity_kind,
                temporal_json,
                spatial_json,
                priority_json,
                relational_json,
                intentional_json,
                context_score,
                version,
                created_at,
                last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                owner_id=excluded.owner_id,
                entity_kind=excluded.entity_kind,
                temporal_json=excluded.temporal_json,
                spatial_json=excluded.spatial_json,
                priority_json=excluded.priority_json,
                relational_json=excluded.relational_json,
                intentional_json=excluded.intentional_json,
                context_score=excluded.context_score,
                version=contexts.version + 1,
                last_updated=excluded.last_updated
            """,
            (
                context.entity_id,
                context.owner_id,
                context.entity_kind,
                context.temporal.model_dump_json(),
                context.spatial.model_dump_json(),
                context.priority.model_dump_json(),
                context.relational.model_dump_json(),
                context.intentional.model_dump_json(),
                context.context_score,
                _iso(context.created_at),
                now,
            ),
        )
        self._conn.commit()
        stored = self._select(context.entity_id)
        assert stored is not None
        return stored

    async def get(self, entity_id: str) -> Optional[UnifiedContext]:
        return await self._run(self._select, entity_id)

    async def delete(self, entity_id: str) -> bool:
        return await self._run(self._delete, entity_id)

    def _delete(self, entity_id: str) -> bool:
        cur = self._conn.cursor()
        cur.execute("DELETE FROM contexts WHERE entity_id = ?", (entity_id,))
        deleted = cur.rowcount > 0
        self._conn.commit()
        return deleted

    async def update(self, entity_id: str, **changes: Any) -> UnifiedContext:
        """
        Partially replace dimensions and/or the score of an existing context.

        Raises:
            ContextNotFoundError: no context stored for entity_id
            ValueError: a key is not a dimension name or context_score, a
                dimension does not validate, or the score is outside 0..100
        """
        validated = _validate_changes(changes)
        return await self._run(self._update, entity_id, validated)

    def _update(self, entity_id: str, changes: Dict[str, Any]) -> UnifiedContext:
        assignments = ["version = version + 1", "last_updated = ?"]
        params: List[Any] = [_iso(self._clock())]
        for name, value in changes.items():
            if name == "context_score":
                assignments.append("context_score = ?")
                params.append(value)
            else:
                assignments.append(f"{name}_json = ?")
                params.append(value.model_dump_json())
        params.append(entity_id)

        cur = self._conn.cursor()
        cur.execute(
            f"UPDATE contexts SET {', '.join(assignments)} WHERE entity_id = ?",
            params,
        )
        if cur.rowcount == 0:
            self._conn.rollback()
            raise ContextNotFoundError(entity_id)
        self._conn.commit()
        stored = self._select(entity_id)
        assert stored is not None
        return stored

    async def query_by_owner(
        self, owner_id: str, filters: Optional[ContextFilters] = None
    ) -> List[UnifiedContext]:
        return await self._run(self._query_by_owner, owner_id, filters or ContextFilters())

    def _query_by_owner(self, owner_id: str, filters: ContextFilters) -> List[UnifiedContext]:
        query = "SELECT * FROM contexts WHERE owner_id = ?"
        params: List[Any] = [owner_id]

        if filters.entity_kind:
            query += " AND entity_kind = ?"
            params.append(filters.entity_kind)

        if filters.min_score is not None:
            query += " AND context_score >= ?"
            params.append(filters.min_score)

        query += " ORDER BY context_score DESC, entity_id"

        cur = self._conn.cursor()
        cur.execute(query, params)
        return [self._row_to_context(row) for row in cur.fetchall()]

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Retention sweep: drop contexts not updated since cutoff."""
        removed = await self._run(self._delete_older_than, _iso(cutoff))
        logger.info("Swept %d contexts last updated before %s", removed, cutoff)
        return removed

    def _delete_older_than(self, cutoff: str) -> int:
        cur = self._conn.cursor()
        cur.execute("DELETE FROM contexts WHERE last_updated < ?", (cutoff,))
        removed = cur.rowcount
        self._conn.commit()
        return removed

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True


class MemoryContextStore(_RetentionMixin):
    """
    In-process reference implementation of the Context Store port.

    Records are copied on the way in and out, so callers never hold a live
    reference to stored state.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        high_priority_score: int = HIGH_PRIORITY_SCORE,
    ) -> None:
        self._clock = clock
        self._high_priority_score = high_priority_score
        self._records: Dict[str, UnifiedContext] = {}
        self._lock = threading.Lock()

    async def save(self, context: UnifiedContext) -> UnifiedContext:
        now = self._clock()
        with self._lock:
            existing = self._records.get(context.entity_id)
            if existing is None:
                stored = context.model_copy(deep=True, update={"version": 1, "last_updated": now})
            else:
                stored = context.model_copy(
                    deep=True,
                    update={
                        "created_at": existing.created_at,
                        "version": existing.version + 1,
                        "last_updated": now,
                    },
                )
            self._records[context.entity_id] = stored
            return stored.model_copy(deep=True)

    async def get(self, entity_id: str) -> Optional[UnifiedContext]:
        with self._lock:
            record = self._records.get(entity_id)
            return record.model_copy(deep=True) if record else None

    async def delete(self, entity_id: str) -> bool:
        with self._lock:
            return self._records.pop(entity_id, None) is not None

    async def update(self, entity_id: str, **changes: Any) -> UnifiedContext:
        validated = _validate_changes(changes)
        now = self._clock()
        with self._lock:
            existing = self._records.get(entity_id)
            if existing is None:
                raise ContextNotFoundError(entity_id)
            stored = existing.model_copy(
                deep=True,
                update={**validated, "version": existing.version + 1, "last_updated": now},
            )
            self._records[entity_id] = stored
            return stored.model_copy(deep=True)

    async def query_by_owner(
        self, owner_id: str, filters: Optional[ContextFilters] = None
    ) -> List[UnifiedContext]:
        filters = filters or ContextFilters()
        with self._lock:
            matches = [
                record.model_copy(deep=True)
                for record in self._records.values()
                if record.owner_id == owner_id
                and (not filters.entity_kind or record.entity_kind == filters.entity_kind)
                and (filters.min_score is None or record.context_score >= filters.min_score)
            ]
        matches.sort(key=lambda c: (-c.context_score, c.entity_id))
        return matches

    async def delete_older_than(self, cutoff: datetime) -> int:
        threshold = _aware(cutoff)
        with self._lock:
            stale = [
                entity_id
                for entity_id, record in self._records.items()
                if _aware(record.last_updated) < threshold
            ]
            for entity_id in stale:
                del self._records[entity_id]
        logger.info("Swept %d contexts last updated before %s", len(stale), cutoff)
        return len(stale)
