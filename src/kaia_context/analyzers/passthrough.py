"""
Identity analyzers for the dimensions without concrete enrichment yet.

Each is a named NoOpAnalyzer so wiring code reads by dimension and a real
implementation (geocoding, dependency graph, behaviour mining) can replace
it one-for-one.
"""
from __future__ import annotations

from ..kernel.schema import (
    IntentionalContext,
    PriorityContext,
    RelationalContext,
    SpatialContext,
)
from .base import NoOpAnalyzer


class SpatialContextAnalyzer(NoOpAnalyzer[SpatialContext]):
    dimension = "spatial"


class PriorityContextAnalyzer(NoOpAnalyzer[PriorityContext]):
    dimension = "priority"


class RelationalContextAnalyzer(NoOpAnalyzer[RelationalContext]):
    dimension = "relational"


class IntentionalContextAnalyzer(NoOpAnalyzer[IntentionalContext]):
    dimension = "intentional"
