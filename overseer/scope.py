"""Task scope: the active task, its items and progress."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .events import EventEmitter, EventType, SupervisorEvent
from .models import CompletionMatch, ItemStatus, Task, TaskItem, TaskStatus, now_ms

logger = logging.getLogger(__name__)

ALL_KEYWORDS = ("todas", "todos", "cada", "all", "every")

_NUMBER_RE = re.compile(r"\d+")
_LIST_ITEM_RE = re.compile(r"(?:^|\n)[ \t]*(?:[-*•]|\d+[.)])[ \t]*(.+)")


@dataclass
class Progress:
    completed: int = 0
    total: int = 0
    percentage: int = 0
    current: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "total": self.total,
            "percentage": self.percentage,
            "current": self.current,
        }

    def describe(self) -> str:
        text = f"{self.completed}/{self.total} items completed ({self.percentage}%)"
        if self.current:
            text += f", working on: {self.current}"
        return text


@dataclass
class ScopeHints:
    """What a user request says about its own scope."""

    numbers: list[int] = field(default_factory=list)
    has_all_keyword: bool = False
    items: list[str] = field(default_factory=list)


def extract_scope(message: str) -> ScopeHints:
    lowered = message.lower()
    return ScopeHints(
        numbers=[int(n) for n in _NUMBER_RE.findall(message)],
        has_all_keyword=any(k in lowered for k in ALL_KEYWORDS),
        items=[m.strip() for m in _LIST_ITEM_RE.findall(message)],
    )


class TaskScope:
    """Holds the active task. Item status only moves forward, except that
    choosing a new current item sends the previous one back to pending."""

    def __init__(self, emitter: EventEmitter | None = None) -> None:
        self.emitter = emitter or EventEmitter()
        self.task: Task | None = None

    # =========================================================================
    # TASK
    # =========================================================================

    def create_task(
        self, title: str, items: list[str] | None = None, description: str | None = None
    ) -> Task:
        self.task = Task(
            title=title,
            description=description,
            items=[TaskItem(name=name) for name in items or []],
        )
        logger.info("Task created: %s (%d items)", title, len(self.task.items))
        self._emit_task()
        return self.task

    def start_task(self) -> None:
        if self.task is None:
            return
        self.task.status = TaskStatus.IN_PROGRESS
        self.task.started_at = now_ms()
        self._emit_task()

    def complete_task(self) -> None:
        if self.task is None:
            return
        self.task.status = TaskStatus.COMPLETED
        self.task.completed_at = now_ms()
        self._emit_task()

    def cancel_task(self) -> None:
        if self.task is None:
            return
        self.task.status = TaskStatus.CANCELLED
        self._emit_task()

    def clear(self) -> None:
        self.task = None

    # =========================================================================
    # ITEMS
    # =========================================================================

    @property
    def items(self) -> list[TaskItem]:
        return self.task.items if self.task else []

    def find_item(self, item_id: str) -> TaskItem | None:
        return next((i for i in self.items if i.id == item_id), None)

    def add_item(self, name: str) -> TaskItem | None:
        if self.task is None:
            return None
        item = TaskItem(name=name)
        self.task.items.append(item)
        self._emit_progress()
        return item

    def update_item_status(self, item_id: str, status: ItemStatus) -> bool:
        """Returns False when the item is unknown or already completed."""
        item = self.find_item(item_id)
        if item is None:
            return False
        if item.status == ItemStatus.COMPLETED and status != ItemStatus.COMPLETED:
            logger.debug("Ignoring %s -> %s: item already completed", item.name, status.value)
            return False
        item.status = status
        if status == ItemStatus.COMPLETED:
            logger.info("Item completed: %s", item.name)
        self._emit_progress()
        return True

    def set_current_item(self, item_id: str) -> bool:
        target = self.find_item(item_id)
        if target is None or target.status == ItemStatus.COMPLETED:
            return False
        for item in self.items:
            if item.status == ItemStatus.IN_PROGRESS:
                item.status = ItemStatus.PENDING
        target.status = ItemStatus.IN_PROGRESS
        self._emit_progress()
        return True

    def apply_completion(self, match: CompletionMatch) -> bool:
        if match.item_id:
            item = self.find_item(match.item_id)
        else:
            item = next((i for i in self.items if i.name == match.item_name), None)
        if item is None:
            return False
        return self.update_item_status(item.id, ItemStatus.COMPLETED)

    # =========================================================================
    # PROGRESS
    # =========================================================================

    def progress(self) -> Progress:
        items = self.items
        total = len(items)
        completed = sum(1 for i in items if i.status == ItemStatus.COMPLETED)
        current = next((i.name for i in items if i.status == ItemStatus.IN_PROGRESS), None)
        return Progress(
            completed=completed,
            total=total,
            # Half rounds up: 1 of 8 is 13%.
            percentage=int(completed / total * 100 + 0.5) if total else 0,
            current=current,
        )

    def pending_items(self) -> list[TaskItem]:
        return [i for i in self.items if i.status != ItemStatus.COMPLETED]

    def is_complete(self) -> bool:
        progress = self.progress()
        return progress.total > 0 and progress.completed == progress.total

    def _emit_task(self) -> None:
        if self.task is None:
            return
        self.emitter.emit_nowait(
            SupervisorEvent(
                type=EventType.TASK_UPDATED,
                message=self.task.title,
                data={"task_id": self.task.id, "status": self.task.status.value},
            )
        )

    def _emit_progress(self) -> None:
        self.emitter.emit_nowait(
            SupervisorEvent(type=EventType.PROGRESS_CHANGED, data=self.progress().to_dict())
        )
