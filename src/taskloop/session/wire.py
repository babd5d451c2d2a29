"""Wire protocol — decouples the loop from whatever renders or records it.

The loop supervisor sends progress events; the CLI (or a test, or a metrics
exporter) subscribes and consumes them. ``attach`` also makes the wire the
status sink for a ``StatusRegistry``: every committed transition becomes a
``STATUS`` event.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from taskloop.status.registry import StatusRegistry, StatusTransition


class EventType(enum.Enum):
    RUN_BEGIN = "run_begin"
    RUN_END = "run_end"
    ITERATION_BEGIN = "iteration_begin"
    ITERATION_END = "iteration_end"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FEEDBACK = "feedback"
    FINAL_ANSWER = "final_answer"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: loop -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def emit(self, type: EventType, **data: Any) -> None:
        self.send(WireEvent(type=type, data=data))

    def send_transition(self, transition: StatusTransition) -> None:
        self.emit(
            EventType.STATUS,
            entity=transition.entity.value,
            entity_id=transition.entity_id,
            from_status=transition.from_status,
            to_status=transition.to_status,
            timestamp=transition.timestamp,
            metadata=dict(transition.metadata),
        )

    def attach(self, registry: StatusRegistry) -> Callable[[], None]:
        """Forward every committed transition of ``registry`` to this wire.

        Returns the unsubscribe function.
        """
        return registry.subscribe(self.send_transition)

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
