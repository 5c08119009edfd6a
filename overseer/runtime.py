"""Session wiring: one object owning every supervisor component."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .behavior import BehaviorSupervisor
from .completion import CompletionDetector
from .config_loader import apply_to_tree
from .defaults import default_configs
from .events import EventEmitter
from .gate import ProgressSnapshot, StopGate
from .history import AlertHistory, AlertStore
from .judge import RuleJudge
from .models import AnalysisResult, CompletionMatch, SupervisorConfig, ThinkingChunk
from .scheduler import AnalysisScheduler
from .scope import TaskScope, extract_scope
from .tree import SupervisorTree

logger = logging.getLogger(__name__)


class SupervisorRuntime:
    """Thinking chunks go to the scheduler; output text goes to the detector."""

    def __init__(
        self,
        judge: RuleJudge,
        configs: Iterable[SupervisorConfig] | None = None,
        *,
        store: AlertStore | None = None,
        emitter: EventEmitter | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.emitter = emitter or EventEmitter()
        self.tree = SupervisorTree(judge)
        self.config_errors = apply_to_tree(
            self.tree, default_configs() if configs is None else configs
        )
        self.history = AlertHistory(store)
        self.behavior = BehaviorSupervisor(judge)
        self.scheduler = AnalysisScheduler(
            self.tree,
            self.history,
            behavior=self.behavior,
            emitter=self.emitter,
            timeout_seconds=timeout_seconds,
        )
        self.detector = CompletionDetector(self.emitter)
        self.scope = TaskScope(self.emitter)
        self.gate = StopGate(self.history, self.progress_snapshot, emitter=self.emitter)
        self.original_request: str | None = None

    def progress_snapshot(self) -> ProgressSnapshot:
        if self.scope.task is None:
            return ProgressSnapshot()
        return ProgressSnapshot(
            percentage=self.scope.progress().percentage,
            pending_items=[i.name for i in self.scope.pending_items()],
        )

    def start_task(self, request: str, title: str | None = None) -> None:
        """Establish scope from a user request."""
        self.original_request = request
        items = extract_scope(request).items
        first_line = next(iter(request.strip().splitlines()), "Task")
        self.scope.create_task(title or first_line[:80], items)
        self.scope.start_task()
        self.detector.reset()
        logger.info("Scope established with %d item(s)", len(items))

    async def on_thinking(
        self, content: str, context: dict[str, Any] | None = None
    ) -> AnalysisResult:
        context = dict(context or {})
        if self.original_request and "original_request" not in context:
            context["original_request"] = self.original_request
        if self.scope.task is not None and "current_progress" not in context:
            context["current_progress"] = self.scope.progress().describe()
        return await self.scheduler.analyze_thinking(ThinkingChunk(content=content), context)

    def on_output(self, text: str) -> list[CompletionMatch]:
        matches = self.detector.process_output(text, self.scope.items)
        for match in matches:
            self.scope.apply_completion(match)
        return matches

    async def load(self) -> None:
        await self.history.load()

    def reset(self) -> None:
        self.detector.reset()
        self.scope.clear()
        self.original_request = None
