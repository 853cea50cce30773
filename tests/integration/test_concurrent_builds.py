"""
Integration tests for concurrent context builds.

Builds for one entity may race; the store serializes the version bump so the
final version equals the number of builds and no build ever sees a version
go backwards. A failed build or a rejected update leaves the store untouched.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from kaia_context.entities import GenericEntity, Task
from kaia_context.errors import AnalyzerError, StoreError
from kaia_context.kernel.bus import ChangeBus
from kaia_context.kernel.engine import ContextBuilder
from kaia_context.kernel.schema import TemporalContext
from kaia_context.kernel.store import MemoryContextStore, SqliteContextStore
from kaia_context.recompute import ContextRecomputer
from kaia_context.repository import EntityRepository


class SlowTemporalAnalyzer:
    """Yields to the loop before answering so builds interleave."""

    async def analyze(self, base: TemporalContext, entity) -> TemporalContext:
        await asyncio.sleep(0.001)
        return base


class FailingPriorityAnalyzer:
    async def analyze(self, base, entity):
        raise ZeroDivisionError("bad weighting")


class TestConcurrentBuilds:
    @pytest.mark.asyncio
    async def test_sqlite_versions_count_every_build(self, temp_db, clock):
        store = SqliteContextStore(temp_db, clock=clock)
        builder = ContextBuilder(store, temporal_analyzer=SlowTemporalAnalyzer(), clock=clock)
        entity = GenericEntity(id="note-1", owner_id="user-1")

        results = await asyncio.gather(*(builder.build_context(entity) for _ in range(10)))

        assert sorted(c.version for c in results) == list(range(1, 11))
        stored = await builder.get("note-1")
        assert stored is not None
        assert stored.version == 10
        store.close()

    @pytest.mark.asyncio
    async def test_memory_versions_count_every_build(self, clock):
        store = MemoryContextStore(clock=clock)
        builder = ContextBuilder(store, temporal_analyzer=SlowTemporalAnalyzer(), clock=clock)
        entity = GenericEntity(id="note-1", owner_id="user-1")

        results = await asyncio.gather(*(builder.build_context(entity) for _ in range(10)))

        assert sorted(c.version for c in results) == list(range(1, 11))
        assert (await builder.get("note-1")).version == 10

    @pytest.mark.asyncio
    async def test_sequential_versions_never_decrease(self, temp_db, clock):
        store = SqliteContextStore(temp_db, clock=clock)
        builder = ContextBuilder(store, clock=clock)
        entity = GenericEntity(id="note-1", owner_id="user-1")

        versions = []
        for _ in range(5):
            clock.advance(minutes=1)
            versions.append((await builder.build_context(entity)).version)

        assert versions == [1, 2, 3, 4, 5]
        store.close()

    @pytest.mark.asyncio
    async def test_score_is_always_a_bounded_int(self, clock):
        builder = ContextBuilder(MemoryContextStore(clock=clock), clock=clock)
        for priority in ("low", "medium", "high", "urgent"):
            for hours in (-30, 0, 10, 30, 200):
                task = Task(
                    id=f"task-{priority}-{hours}",
                    owner_id="user-1",
                    title="Plan sprint",
                    priority=priority,
                    due_at=clock.now + timedelta(hours=hours),
                    blocks=["task-x"],
                )
                context = await builder.build_context(task)
                assert isinstance(context.context_score, int)
                assert 0 <= context.context_score <= 100


class TestFailedBuilds:
    @pytest.mark.asyncio
    async def test_analyzer_failure_persists_nothing(self, temp_db, clock):
        store = SqliteContextStore(temp_db, clock=clock)
        builder = ContextBuilder(
            store, priority_analyzer=FailingPriorityAnalyzer(), clock=clock
        )

        with pytest.raises(AnalyzerError) as excinfo:
            await builder.build_context(GenericEntity(id="note-1", owner_id="user-1"))

        assert excinfo.value.dimension == "priority"
        assert excinfo.value.entity_id == "note-1"
        assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
        assert await store.get("note-1") is None
        store.close()

    @pytest.mark.asyncio
    async def test_analyzer_failure_keeps_previous_version(self, clock):
        store = MemoryContextStore(clock=clock)
        entity = GenericEntity(id="note-1", owner_id="user-1")
        await ContextBuilder(store, clock=clock).build_context(entity)

        failing = ContextBuilder(store, priority_analyzer=FailingPriorityAnalyzer(), clock=clock)
        with pytest.raises(AnalyzerError):
            await failing.build_context(entity)

        assert (await store.get("note-1")).version == 1

    @pytest.mark.asyncio
    async def test_closed_store_raises_store_error(self, temp_db, clock):
        store = SqliteContextStore(temp_db, clock=clock)
        store.close()

        with pytest.raises(StoreError):
            await store.get("note-1")


class TestRecomputeUnderLoad:
    @pytest.mark.asyncio
    async def test_burst_of_updates_ends_on_latest_version(self, temp_db, clock):
        bus = ChangeBus()
        repo = EntityRepository(temp_db, bus=bus)
        builder = ContextBuilder(MemoryContextStore(clock=clock), clock=clock)
        recomputer = ContextRecomputer(bus, builder)

        await repo.create("TASK", "user-1", {"title": "Draft"}, entity_id="task-1")
        await asyncio.gather(
            *(repo.update("task-1", {"title": f"Draft {i}"}) for i in range(5))
        )

        stored = await builder.get("task-1")
        assert stored is not None
        assert stored.version == 6

        recomputer.close()
        repo.close()


class TestRejectedUpdates:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("score", [150, -1])
    async def test_memory_store_keeps_score_in_range(self, clock, score):
        store = MemoryContextStore(clock=clock)
        builder = ContextBuilder(store, clock=clock)
        built = await builder.build_context(GenericEntity(id="note-1", owner_id="user-1"))

        with pytest.raises(ValueError):
            await store.update("note-1", context_score=score)

        stored = await store.get("note-1")
        assert stored.context_score == built.context_score
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_sqlite_bad_dimension_writes_nothing(self, temp_db, clock):
        store = SqliteContextStore(temp_db, clock=clock)
        builder = ContextBuilder(store, clock=clock)
        await builder.build_context(GenericEntity(id="note-1", owner_id="user-1"))

        with pytest.raises(ValueError):
            await store.update("note-1", priority={"base_priority": "very"}, context_score=80)

        assert (await store.get("note-1")).version == 1
        assert [c.entity_id for c in await store.query_by_owner("user-1")] == ["note-1"]
        store.close()
