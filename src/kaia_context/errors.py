"""
Error taxonomy for the context engine.

Extraction defaults are not errors. Handler failures never leave the bus.
Everything else surfaces to the direct caller as one of these.
"""
from __future__ import annotations


class ContextError(Exception):
    """Base class for all context engine errors."""


class AnalyzerError(ContextError):
    """An analyzer raised while enriching a dimension. Nothing was persisted."""

    def __init__(self, dimension: str, entity_id: str, cause: BaseException) -> None:
        super().__init__(f"{dimension} analyzer failed for entity {entity_id}: {cause}")
        self.dimension = dimension
        self.entity_id = entity_id


class StoreError(ContextError):
    """The persistence layer failed on save/get/delete/query."""


class ContextNotFoundError(ContextError):
    """A partial update targeted a context that does not exist."""

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"Context not found: {entity_id}")
        self.entity_id = entity_id


class EntityNotFoundError(ContextError):
    """A repository mutation targeted an entity that does not exist."""

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"Entity not found: {entity_id}")
        self.entity_id = entity_id
