"""
Analyzers: one per context dimension.

- temporal: concrete enrichment (time of day, relative time, urgency)
- passthrough: explicit identity analyzers for the other four dimensions
"""
from .base import DimensionAnalyzer, NoOpAnalyzer
from .passthrough import (
    IntentionalContextAnalyzer,
    PriorityContextAnalyzer,
    RelationalContextAnalyzer,
    SpatialContextAnalyzer,
)
from .temporal import TemporalContextAnalyzer, deadline_urgency

__all__ = [
    "DimensionAnalyzer",
    "NoOpAnalyzer",
    "TemporalContextAnalyzer",
    "SpatialContextAnalyzer",
    "PriorityContextAnalyzer",
    "RelationalContextAnalyzer",
    "IntentionalContextAnalyzer",
    "deadline_urgency",
]
