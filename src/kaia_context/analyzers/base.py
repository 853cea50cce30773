from __future__ import annotations

from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel

DimensionT = TypeVar("DimensionT", bound=BaseModel)


class DimensionAnalyzer(Protocol[DimensionT]):
    """
    Enriches one base dimension.

    Implementations must not mutate `base` or `entity`; they return a new
    value (or `base` itself when there is nothing to add). They must not
    write to the Context Store.
    """

    async def analyze(self, base: DimensionT, entity: Any) -> DimensionT: ...


class NoOpAnalyzer(Generic[DimensionT]):
    """
    Identity analyzer: returns the base dimension untouched.

    This is the supported default for dimensions without enrichment logic.
    Swap in a concrete analyzer without touching the builder.
    """

    dimension: str = "generic"

    async def analyze(self, base: DimensionT, entity: Any) -> DimensionT:
        return base
