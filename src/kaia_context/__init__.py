"""
kaia-context: contextual scoring for personal-assistant entities.

Public API re-exports from kernel/ (machinery), analyzers/ (per-dimension
enrichment) and the entity, repository and recompute layers.
"""
from .kernel.schema import (
    ChangeEvent,
    ChangeKind,
    ContextDimensions,
    ContextFilters,
    EntityKind,
    IntentionalContext,
    PriorityContext,
    RelationalContext,
    SpatialContext,
    TemporalContext,
    UnifiedContext,
)
from .kernel.bus import ChangeBus, Subscription
from .kernel.capabilities import Extractor, ExtractorRegistry
from .kernel.store import ContextStore, MemoryContextStore, SqliteContextStore
from .kernel.engine import ContextBuilder, calculate_context_score
from .analyzers import NoOpAnalyzer, TemporalContextAnalyzer
from .entities import CalendarEvent, EntityRegistry, GenericEntity, Reminder, Task
from .repository import ChangeEmitter, EntityRepository
from .recompute import ContextRecomputer
from .errors import (
    AnalyzerError,
    ContextError,
    ContextNotFoundError,
    EntityNotFoundError,
    StoreError,
)

__all__ = [
    # Schema
    "ChangeEvent",
    "ChangeKind",
    "ContextDimensions",
    "ContextFilters",
    "EntityKind",
    "IntentionalContext",
    "PriorityContext",
    "RelationalContext",
    "SpatialContext",
    "TemporalContext",
    "UnifiedContext",
    # Bus
    "ChangeBus",
    "Subscription",
    # Capabilities
    "Extractor",
    "ExtractorRegistry",
    # Store
    "ContextStore",
    "MemoryContextStore",
    "SqliteContextStore",
    # Builder
    "ContextBuilder",
    "calculate_context_score",
    # Analyzers
    "NoOpAnalyzer",
    "TemporalContextAnalyzer",
    # Entities
    "CalendarEvent",
    "EntityRegistry",
    "GenericEntity",
    "Reminder",
    "Task",
    # Repository
    "ChangeEmitter",
    "EntityRepository",
    # Recompute
    "ContextRecomputer",
    # Errors
    "AnalyzerError",
    "ContextError",
    "ContextNotFoundError",
    "EntityNotFoundError",
    "StoreError",
]
