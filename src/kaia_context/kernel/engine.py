"""
ContextBuilder: builds and persists the unified context of an entity.

Pipeline per build:
    entity ──> extract base dimensions (capability / registry / default)
           ──> five analyzers, concurrently
           ──> context score
           ──> UnifiedContext ──> ContextStore.save() (upsert, version bump)

A build either stores a fully enriched context or raises; nothing partial is
ever written.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..analyzers.base import DimensionAnalyzer
from ..analyzers.passthrough import (
    IntentionalContextAnalyzer,
    PriorityContextAnalyzer,
    RelationalContextAnalyzer,
    SpatialContextAnalyzer,
)
from ..analyzers.temporal import (
    TemporalContextAnalyzer,
    as_aware,
    deadline_urgency,
    hours_between,
)
from ..errors import AnalyzerError
from .capabilities import (
    ExtractorRegistry,
    IntentionalSource,
    PrioritySource,
    RelationalSource,
    SpatialSource,
    TemporalSource,
    entity_kind_of,
)
from .schema import (
    ContextDimensions,
    IntentionalContext,
    PriorityContext,
    PriorityDecay,
    RelationalContext,
    RelativeTime,
    SpatialContext,
    TemporalContext,
    TimeOfDay,
    UnifiedContext,
    utcnow,
)
from .store import ContextStore

logger = logging.getLogger(__name__)

BASE_SCORE = 50


# =============================================================================
# Scoring
# =============================================================================


def calculate_context_score(dimensions: ContextDimensions, now: datetime) -> int:
    """
    Additive relevance heuristic, clamped to [0, 100].

        base 50
        +20 deadline under 24h, else +10 under 48h
        +15 computed priority above 70, else +5 above 50
        +10 when the entity blocks others
    """
    score = BASE_SCORE

    deadline = dimensions.priority.factors.deadline
    if deadline is not None:
        hours_until = hours_between(now, deadline)
        if hours_until < 24:
            score += 20
        elif hours_until < 48:
            score += 10

    computed = dimensions.priority.computed_priority
    if computed > 70:
        score += 15
    elif computed > 50:
        score += 5

    if dimensions.relational.dependencies.blocks_ids:
        score += 10

    return max(0, min(100, score))


# =============================================================================
# Defaults
# =============================================================================


def default_temporal_context(now: datetime) -> TemporalContext:
    return TemporalContext(
        timestamp=now,
        time_of_day=TimeOfDay.MORNING,
        day_of_week=(now.weekday() + 1) % 7,
        is_workday=True,
        is_holiday=False,
        relative_time=RelativeTime(is_past=False, is_current=True, is_future=False),
    )


def default_spatial_context() -> SpatialContext:
    return SpatialContext()


def default_priority_context(now: datetime) -> PriorityContext:
    return PriorityContext(
        base_priority=50,
        computed_priority=50,
        priority_decay=PriorityDecay(decay_rate=0.0, last_recalculated=now),
    )


def stamp_priority(priority: PriorityContext, now: datetime) -> PriorityContext:
    """
    Fill the clock-dependent priority fields from the build clock: urgency
    follows the deadline (when there is one) and the decay is recalculated now.
    """
    factors = priority.factors
    if factors.deadline is not None:
        factors = factors.model_copy(update={"urgency": deadline_urgency(factors.deadline, now)})
    decay = priority.priority_decay.model_copy(update={"last_recalculated": now})
    return priority.model_copy(update={"factors": factors, "priority_decay": decay})


def default_relational_context() -> RelationalContext:
    return RelationalContext()


def default_intentional_context() -> IntentionalContext:
    return IntentionalContext()


# =============================================================================
# Builder
# =============================================================================


class ContextBuilder:
    def __init__(
        self,
        store: ContextStore,
        temporal_analyzer: Optional[DimensionAnalyzer[TemporalContext]] = None,
        spatial_analyzer: Optional[DimensionAnalyzer[SpatialContext]] = None,
        priority_analyzer: Optional[DimensionAnalyzer[PriorityContext]] = None,
        relational_analyzer: Optional[DimensionAnalyzer[RelationalContext]] = None,
        intentional_analyzer: Optional[DimensionAnalyzer[IntentionalContext]] = None,
        extractors: Optional[ExtractorRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Args:
            store: Context Store the builder writes through
            *_analyzer: Per-dimension analyzers; unset ones use the defaults
                (concrete temporal, no-op for the other four)
            extractors: Kind-keyed extractors for entities that do not
                implement the capability protocols themselves
            clock: Source of "now"
        """
        self._store = store
        self._clock = clock
        self._extractors = extractors or ExtractorRegistry()
        self._analyzers: Dict[str, DimensionAnalyzer[Any]] = {
            "temporal": temporal_analyzer or TemporalContextAnalyzer(clock=clock),
            "spatial": spatial_analyzer or SpatialContextAnalyzer(),
            "priority": priority_analyzer or PriorityContextAnalyzer(),
            "relational": relational_analyzer or RelationalContextAnalyzer(),
            "intentional": intentional_analyzer or IntentionalContextAnalyzer(),
        }

    @property
    def store(self) -> ContextStore:
        return self._store

    def now(self) -> datetime:
        return as_aware(self._clock())

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    def extract_base(self, entity: Any, now: datetime) -> Dict[str, Any]:
        """
        Base value per dimension: registered extractor first, then the
        entity's own capability, then the default. Urgency and decay time
        in the priority base are taken from now, not from the entity.
        """
        extractor = self._extractors.get(entity_kind_of(entity))

        def pick(
            name: str,
            source: type,
            method: str,
            default: Callable[[], Any],
        ) -> Any:
            if extractor is not None:
                value = getattr(extractor, name)(entity)
                if value is not None:
                    return value
            if isinstance(entity, source):
                return getattr(entity, method)()
            return default()

        return {
            "temporal": pick(
                "temporal", TemporalSource, "extract_temporal_context",
                lambda: default_temporal_context(now),
            ),
            "spatial": pick(
                "spatial", SpatialSource, "extract_spatial_context",
                default_spatial_context,
            ),
            "priority": stamp_priority(
                pick(
                    "priority", PrioritySource, "extract_priority_context",
                    lambda: default_priority_context(now),
                ),
                now,
            ),
            "relational": pick(
                "relational", RelationalSource, "extract_relational_context",
                default_relational_context,
            ),
            "intentional": pick(
                "intentional", IntentionalSource, "extract_intentional_context",
                default_intentional_context,
            ),
        }

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    async def _analyze(
        self, name: str, base: Any, entity: Any, entity_id: str
    ) -> Tuple[str, Any]:
        try:
            return name, await self._analyzers[name].analyze(base, entity)
        except Exception as exc:
            raise AnalyzerError(name, entity_id, exc) from exc

    async def enrich(self, entity: Any, now: Optional[datetime] = None) -> ContextDimensions:
        """Extract and enrich all five dimensions without persisting."""
        now = now or self.now()
        entity_id = str(entity.id)
        base = self.extract_base(entity, now)
        tasks: list[Awaitable[Tuple[str, Any]]] = [
            self._analyze(name, value, entity, entity_id) for name, value in base.items()
        ]
        enriched = dict(await asyncio.gather(*tasks))
        return ContextDimensions(**enriched)

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def build_context(self, entity: Any) -> UnifiedContext:
        """
        Build, score and persist the unified context of an entity.

        Raises:
            AnalyzerError: an analyzer failed; nothing was stored
            StoreError: the store rejected the write
        """
        now = self.now()
        dimensions = await self.enrich(entity, now)
        score = calculate_context_score(dimensions, now)

        context = UnifiedContext(
            entity_id=str(entity.id),
            owner_id=str(entity.owner_id),
            entity_kind=entity_kind_of(entity),
            created_at=now,
            context_score=score,
            version=1,
            last_updated=now,
            temporal=dimensions.temporal,
            spatial=dimensions.spatial,
            priority=dimensions.priority,
            relational=dimensions.relational,
            intentional=dimensions.intentional,
        )
        stored = await self._store.save(context)
        logger.debug(
            "Built context for %s %s: score=%d version=%d",
            stored.entity_kind,
            stored.entity_id,
            stored.context_score,
            stored.version,
        )
        return stored

    async def get(self, entity_id: str) -> Optional[UnifiedContext]:
        """Stored context for entity_id, or None when there is none."""
        return await self._store.get(entity_id)

    async def invalidate_context(self, entity_id: str) -> None:
        """Drop the stored context. Missing ids are a no-op."""
        removed = await self._store.delete(entity_id)
        if removed:
            logger.debug("Invalidated context for %s", entity_id)
