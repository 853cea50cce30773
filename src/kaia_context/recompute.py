"""
ContextRecomputer: keeps stored contexts in step with entity mutations.

The flow:
  1. Repository commits a mutation -> publishes a ChangeEvent on the bus
  2. ContextRecomputer receives it
  3. CREATE / UPDATE: hydrate the entity from the payload, rebuild context
  4. DELETE: invalidate the stored context

Nobody awaits the outcome of a bus-triggered rebuild, so failures are logged
and dropped here; the next mutation of the entity retriggers the rebuild.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from .entities import EntityRegistry
from .kernel.bus import ChangeBus, Subscription
from .kernel.schema import ChangeEvent, ChangeKind

if TYPE_CHECKING:
    from .kernel.engine import ContextBuilder

logger = logging.getLogger(__name__)


class ContextRecomputer:
    def __init__(
        self,
        bus: ChangeBus,
        builder: "ContextBuilder",
        entities: Optional[EntityRegistry] = None,
    ) -> None:
        """
        Subscribe to CREATE, UPDATE and DELETE on the bus.

        Args:
            bus: Shared change bus
            builder: ContextBuilder used for rebuilds and invalidation
            entities: Registry used to hydrate payloads (defaults to the
                built-in Task / CalendarEvent / Reminder kinds)
        """
        self._builder = builder
        self._entities = entities or EntityRegistry()
        self._subscriptions: List[Subscription] = [
            bus.subscribe(ChangeKind.CREATE, self._on_upsert),
            bus.subscribe(ChangeKind.UPDATE, self._on_upsert),
            bus.subscribe(ChangeKind.DELETE, self._on_delete),
        ]

    async def _on_upsert(self, event: ChangeEvent) -> None:
        try:
            entity = self._entities.hydrate(event)
            await self._builder.build_context(entity)
        except Exception:
            logger.exception(
                "Context rebuild failed for %s %s (change %s)",
                event.entity_kind,
                event.entity_id,
                event.id,
            )

    async def _on_delete(self, event: ChangeEvent) -> None:
        try:
            await self._builder.invalidate_context(event.entity_id)
        except Exception:
            logger.exception(
                "Context invalidation failed for %s %s (change %s)",
                event.entity_kind,
                event.entity_id,
                event.id,
            )

    def close(self) -> None:
        """Unsubscribe from the bus."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
