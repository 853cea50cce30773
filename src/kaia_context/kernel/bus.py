"""
ChangeBus: typed publish/subscribe for committed mutations.

Repositories publish ChangeEvents after they commit; subscribers such as the
ContextRecomputer react to them. The bus is constructed once by the
composition root and passed by reference. It holds no module-level state.

Dispatch semantics:
  - every handler registered for event.kind runs concurrently; sync handlers
    run in a worker thread so a blocking one never holds up the loop
  - a handler that raises (sync or async) is logged and ignored
  - publish() returns once every handler has settled
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from .schema import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Optional[Awaitable[None]]]
EventKindLike = Union[str, ChangeKind]


def _kind_key(kind: EventKindLike) -> str:
    return kind.value if isinstance(kind, ChangeKind) else str(kind)


@dataclass(frozen=True)
class Subscription:
    """
    Handle returned by subscribe(). cancel() removes this one registration;
    other subscriptions of the same handler stay in place.
    """

    bus: "ChangeBus"
    event_kind: str
    handler: ChangeHandler

    def cancel(self) -> None:
        self.bus.unsubscribe(self.event_kind, self.handler)


class ChangeBus:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[ChangeHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_kind: EventKindLike, handler: ChangeHandler) -> Subscription:
        """
        Register a handler for one event kind.

        Args:
            event_kind: CREATE / UPDATE / DELETE (or any custom kind string)
            handler: Callable taking the ChangeEvent; may return an awaitable

        Returns:
            Subscription handle for later cancel()
        """
        key = _kind_key(event_kind)
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)
        return Subscription(bus=self, event_kind=key, handler=handler)

    def unsubscribe(self, event_kind: EventKindLike, handler: ChangeHandler) -> None:
        """
        Remove one registration of a handler, the earliest. No-op if it is not
        registered, so repeated calls are harmless.
        """
        key = _kind_key(event_kind)
        with self._lock:
            handlers = self._handlers.get(key)
            if not handlers or handler not in handlers:
                return
            handlers.remove(handler)
            if not handlers:
                del self._handlers[key]

    async def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(_kind_key(event.kind), ()))
        if not handlers:
            return
        await asyncio.gather(*(self._deliver(handler, event) for handler in handlers))

    async def _deliver(self, handler: ChangeHandler, event: ChangeEvent) -> None:
        try:
            if inspect.iscoroutinefunction(handler):
                result = handler(event)
            else:
                result = await asyncio.to_thread(handler, event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Handler %r failed for %s %s/%s",
                handler,
                _kind_key(event.kind),
                event.entity_kind,
                event.entity_id,
            )

    def list_event_kinds(self) -> List[str]:
        with self._lock:
            return list(self._handlers.keys())

    def handler_count(self, event_kind: EventKindLike) -> int:
        with self._lock:
            return len(self._handlers.get(_kind_key(event_kind), ()))

    def clear(self) -> None:
        """Drop every subscription (test teardown, shutdown)."""
        with self._lock:
            self._handlers.clear()
