"""
Standardized event system for the supervisor.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
from uuid import UUID, uuid4

from .models import now_ms

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    ANALYSIS_COMPLETE = "analysis.complete"
    ANALYSIS_TIMEOUT = "analysis.timeout"
    ALERT_TRIGGERED = "alert.triggered"

    COMPLETION_DETECTED = "completion.detected"
    PROGRESS_CHANGED = "progress.changed"
    TASK_UPDATED = "task.updated"

    STOP_CHECKED = "stop.checked"
    BYPASS_CHANGED = "bypass.changed"
    GATE_STARTED = "gate.started"
    GATE_STOPPED = "gate.stopped"


@dataclass
class SupervisorEvent:
    """Standardized event for the supervisor."""

    type: EventType
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }


Handler = Callable[[SupervisorEvent], Union[None, Awaitable[None]]]


class EventEmitter:
    """Emits events to registered handlers.

    Handlers may be plain callables or coroutine functions. A failing handler
    is logged and never interrupts the emitter.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[EventType | None, Handler]] = []

    def on_event(self, handler: Handler, event_type: EventType | None = None) -> None:
        self._handlers.append((event_type, handler))

    def off_event(self, handler: Handler) -> None:
        self._handlers = [(t, h) for t, h in self._handlers if h is not handler]

    def _matching(self, event: SupervisorEvent) -> list[Handler]:
        return [h for t, h in self._handlers if t is None or t == event.type]

    async def emit(self, event: SupervisorEvent) -> None:
        for handler in self._matching(event):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Event handler error for %s: %s", event.type.value, exc)

    def emit_nowait(self, event: SupervisorEvent) -> None:
        """Emit from synchronous code; awaitable results are scheduled on the loop."""
        for handler in self._matching(event):
            try:
                result = handler(event)
            except Exception as exc:
                logger.warning("Event handler error for %s: %s", event.type.value, exc)
                continue
            if inspect.isawaitable(result):
                _schedule(result, event)


def _schedule(awaitable: Awaitable[None], event: SupervisorEvent) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("Dropping async handler for %s: no running loop", event.type.value)
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        return
    task = loop.create_task(_guard(awaitable, event))
    _PENDING.add(task)
    task.add_done_callback(_PENDING.discard)


async def _guard(awaitable: Awaitable[None], event: SupervisorEvent) -> None:
    try:
        await awaitable
    except Exception as exc:
        logger.warning("Event handler error for %s: %s", event.type.value, exc)


_PENDING: set[asyncio.Task[None]] = set()
