"""Publish refinement engine events to viewers.

The orchestrator emits one ``ForgeEvent`` per step of a cycle: state
changes, stream fragments, validation failures, retries and analytics.
A viewer subscribes to the event types it renders, or to ``"*"`` for all
of them.

Delivery is sequential. ``emit`` awaits each matching handler before
calling the next one, so a viewer sees the fragments of a stream in the
order they were produced. A handler that raises is logged and skipped.

The bus also remembers the most recent events, which ``events()`` can
filter by type or by artifact lineage.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from typing import Any, Callable

from uiforge.types import EventType, ForgeEvent

_logger = logging.getLogger(__name__)

ALL_EVENTS = "*"

Handler = Callable[[ForgeEvent], Any]
Unsubscribe = Callable[[], None]


def _resolve(event_type: EventType | str) -> EventType | None:
    """Map a subscription name to its ``EventType``; ``None`` means all."""
    if isinstance(event_type, EventType):
        return event_type
    if event_type == ALL_EVENTS:
        return None
    return EventType(event_type)


class EventBus:
    """Routes ``ForgeEvent``s from the orchestrator to its viewers."""

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[EventType | None, list[Handler]] = {}
        self._recent: deque[ForgeEvent] = deque(maxlen=max_history)

    def subscribe(self, event_type: EventType | str, handler: Handler) -> Unsubscribe:
        """Register *handler* and return a callable that removes it again.

        *event_type* is an ``EventType``, its string value such as
        ``"stream.fragment"``, or ``"*"``. Unknown names raise ``ValueError``.
        """
        key = _resolve(event_type)
        self._handlers.setdefault(key, []).append(handler)
        return lambda: self._remove(key, handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        self._remove(_resolve(event_type), handler)

    async def emit(self, event: ForgeEvent) -> None:
        self._recent.append(event)
        targets = [*self._handlers.get(event.type, ()), *self._handlers.get(None, ())]
        for handler in targets:
            await self._deliver(handler, event)

    def events(
        self,
        event_type: EventType | str | None = None,
        artifact_id: str | None = None,
    ) -> list[ForgeEvent]:
        """Return remembered events, oldest first.

        Only events of *event_type* are returned when it is given, and only
        events of the lineage *artifact_id* when that is given.
        """
        key = None if event_type is None else _resolve(event_type)
        return [
            e for e in self._recent
            if (key is None or e.type == key)
            and (artifact_id is None or e.data.get("artifact_id") == artifact_id)
        ]

    def clear(self) -> None:
        self._handlers.clear()
        self._recent.clear()

    def _remove(self, key: EventType | None, handler: Handler) -> None:
        handlers = self._handlers.get(key)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._handlers[key]

    @staticmethod
    async def _deliver(handler: Handler, event: ForgeEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "Viewer %s failed on %s",
                getattr(handler, "__name__", handler),
                event.type.value,
            )
