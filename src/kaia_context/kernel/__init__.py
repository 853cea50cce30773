"""
Kernel: the machinery of the context engine.

This module contains the infrastructure the analyzers and builder sit on:
- schema: Context dimensions, unified context and change events
- bus: Change notification pub/sub
- capabilities: Entity capability protocols and kind-keyed extractors
- store: Context Store port and its SQLite / in-memory implementations

The builder (kernel.engine) depends on the analyzers, so it is imported
from kaia_context directly.
"""
from .schema import (
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
    TimeOfDay,
    UnifiedContext,
)
from .bus import ChangeBus, Subscription
from .capabilities import (
    ContextEntity,
    Extractor,
    ExtractorRegistry,
    IntentionalSource,
    PrioritySource,
    RelationalSource,
    SpatialSource,
    TemporalSource,
)
from .store import ContextStore, MemoryContextStore, SqliteContextStore

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
    "TimeOfDay",
    "UnifiedContext",
    # Bus
    "ChangeBus",
    "Subscription",
    # Capabilities
    "ContextEntity",
    "Extractor",
    "ExtractorRegistry",
    "IntentionalSource",
    "PrioritySource",
    "RelationalSource",
    "SpatialSource",
    "TemporalSource",
    # Store
    "ContextStore",
    "MemoryContextStore",
    "SqliteContextStore",
]
