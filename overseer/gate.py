"""
Stop gate: decides whether the supervised agent may stop.

The only state owned here is a one-shot bypass flag. Progress comes from a
provider callable and pending alerts from the alert history.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import settings
from .events import EventEmitter, EventType, SupervisorEvent
from .history import AlertHistory
from .models import StopDecision

logger = logging.getLogger(__name__)

MAX_LISTED_ITEMS = 5
MAX_LISTED_ALERTS = 3

BYPASS_MESSAGE = "Bypass granted"
ALLOW_MESSAGE = "Task complete. You may stop."


@dataclass
class ProgressSnapshot:
    percentage: int = 100
    pending_items: list[str] = field(default_factory=list)

    @property
    def pending_count(self) -> int:
        return len(self.pending_items)


ProgressProvider = Callable[[], ProgressSnapshot]


def _no_task() -> ProgressSnapshot:
    return ProgressSnapshot()


def build_block_message(
    progress: ProgressSnapshot, alert_messages: list[str], reasons: list[str]
) -> str:
    lines = ["SUPERVISOR: stop blocked.", "", "Reason(s):"]
    lines.extend(f"- {reason}" for reason in reasons)

    if progress.pending_items:
        lines.extend(["", "Pending items:"])
        lines.extend(f"  o {item}" for item in progress.pending_items[:MAX_LISTED_ITEMS])
        hidden = progress.pending_count - MAX_LISTED_ITEMS
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")

    if alert_messages:
        lines.extend(["", "Pending alerts:"])
        lines.extend(f"  ! {message}" for message in alert_messages[:MAX_LISTED_ALERTS])

    lines.extend(["", "Continue working or use /bypass to force stop."])
    return "\n".join(lines)


class StopGate:
    def __init__(
        self,
        history: AlertHistory,
        progress_provider: ProgressProvider | None = None,
        *,
        alert_window_seconds: float | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self._history = history
        self._progress = progress_provider or _no_task
        self.alert_window_seconds = (
            settings.pending_alert_window
            if alert_window_seconds is None
            else alert_window_seconds
        )
        self.emitter = emitter or EventEmitter()
        self._lock = threading.Lock()
        self._bypass_next = False

    @property
    def bypass_active(self) -> bool:
        with self._lock:
            return self._bypass_next

    def allow_next_stop(self) -> None:
        """Let exactly the next stop check through."""
        with self._lock:
            self._bypass_next = True
        logger.info("Next stop will be allowed (bypass)")
        self._emit(EventType.BYPASS_CHANGED, "Bypass armed", {"bypass": True})

    def _consume_bypass(self) -> bool:
        with self._lock:
            armed = self._bypass_next
            self._bypass_next = False
        if armed:
            self._emit(EventType.BYPASS_CHANGED, "Bypass consumed", {"bypass": False})
        return armed

    def pending_alert_messages(self) -> list[str]:
        return [e.message for e in self._history.pending(self.alert_window_seconds)]

    def check_stop(self, context: dict[str, Any] | None = None) -> StopDecision:
        if self._consume_bypass():
            logger.info("Bypass active, allowing stop")
            decision = StopDecision(allow=True, message=BYPASS_MESSAGE)
            self._emit_checked(decision, context)
            return decision

        progress = self._progress()
        alert_messages = self.pending_alert_messages()

        reasons: list[str] = []
        if progress.pending_count > 0 and progress.percentage < 100:
            reasons.append(f"Task incomplete: {progress.pending_count} pending item(s)")
        if alert_messages:
            reasons.append(f"{len(alert_messages)} pending alert(s)")

        if reasons:
            decision = StopDecision(
                allow=False,
                message=build_block_message(progress, alert_messages, reasons),
                pending_items=progress.pending_items[:MAX_LISTED_ITEMS],
                pending_alerts=alert_messages[:MAX_LISTED_ALERTS],
            )
        else:
            decision = StopDecision(allow=True, message=ALLOW_MESSAGE)

        logger.info(
            "Stop check: allow=%s progress=%d%% pending=%d alerts=%d",
            decision.allow,
            progress.percentage,
            progress.pending_count,
            len(alert_messages),
        )
        self._emit_checked(decision, context)
        return decision

    def status(self) -> dict[str, Any]:
        progress = self._progress()
        pending_alerts = len(self.pending_alert_messages())
        return {
            "running": True,
            "progress": progress.percentage,
            "pendingItems": progress.pending_count,
            "pendingAlerts": pending_alerts,
            "canStop": progress.pending_count == 0 and pending_alerts == 0,
        }

    def _emit_checked(self, decision: StopDecision, context: dict[str, Any] | None) -> None:
        self._emit(
            EventType.STOP_CHECKED,
            decision.message,
            {"decision": decision.to_dict(), "context": context or {}},
        )

    def _emit(self, event_type: EventType, message: str, data: dict[str, Any]) -> None:
        self.emitter.emit_nowait(SupervisorEvent(type=event_type, message=message, data=data))
