"""
Entity capabilities: what an entity can tell the builder about itself.

An entity passed to ContextBuilder.build_context() implements any subset of
these protocols. Dimensions it does not cover fall back to defaults.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .schema import (
    IntentionalContext,
    PriorityContext,
    RelationalContext,
    SpatialContext,
    TemporalContext,
)


@runtime_checkable
class ContextEntity(Protocol):
    id: str
    owner_id: str


@runtime_checkable
class TemporalSource(Protocol):
    def extract_temporal_context(self) -> TemporalContext: ...


@runtime_checkable
class SpatialSource(Protocol):
    def extract_spatial_context(self) -> SpatialContext: ...


@runtime_checkable
class PrioritySource(Protocol):
    def extract_priority_context(self) -> PriorityContext: ...


@runtime_checkable
class RelationalSource(Protocol):
    def extract_relational_context(self) -> RelationalContext: ...


@runtime_checkable
class IntentionalSource(Protocol):
    def extract_intentional_context(self) -> IntentionalContext: ...


def entity_kind_of(entity: object) -> str:
    """Kind tag of an entity; enum members resolve to their value."""
    kind = getattr(entity, "kind", None)
    if kind is None:
        return "GENERIC"
    return getattr(kind, "value", str(kind))


class Extractor:
    """
    Out-of-entity extraction for kinds that cannot implement the protocols
    themselves (ORM rows, plain dicts). Each method returns None to fall back
    to the entity's own capability or the default.
    """

    def temporal(self, entity: object) -> Optional[TemporalContext]:
        return None

    def spatial(self, entity: object) -> Optional[SpatialContext]:
        return None

    def priority(self, entity: object) -> Optional[PriorityContext]:
        return None

    def relational(self, entity: object) -> Optional[RelationalContext]:
        return None

    def intentional(self, entity: object) -> Optional[IntentionalContext]:
        return None


class ExtractorRegistry:
    def __init__(self) -> None:
        self._registry: dict[str, Extractor] = {}

    def register(self, kind: str, extractor: Extractor) -> None:
        self._registry[getattr(kind, "value", kind)] = extractor

    def get(self, kind: str) -> Optional[Extractor]:
        return self._registry.get(getattr(kind, "value", kind))

    def kinds(self) -> list[str]:
        return list(self._registry)
