"""
Single-flight analysis scheduler.

At most one tree traversal runs at a time. Chunks submitted while busy are
queued in arrival order and the caller gets an empty placeholder right
away. The queue is drained by one worker task, one chunk at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any

from .behavior import BehaviorSupervisor
from .config import settings
from .errors import AnalysisTimeoutError
from .events import EventEmitter, EventType, SupervisorEvent
from .history import AlertHistory
from .models import AnalysisResult, SupervisorResult, ThinkingChunk
from .tree import SupervisorTree

logger = logging.getLogger(__name__)


class AnalysisScheduler:
    def __init__(
        self,
        tree: SupervisorTree,
        history: AlertHistory,
        *,
        behavior: BehaviorSupervisor | None = None,
        emitter: EventEmitter | None = None,
        timeout_seconds: float | None = None,
        cancel_on_timeout: bool | None = None,
    ) -> None:
        self._tree = tree
        self._history = history
        self._behavior = behavior
        self.emitter = emitter or EventEmitter()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.analysis_deadline
        )
        self.cancel_on_timeout = (
            settings.cancel_on_timeout if cancel_on_timeout is None else cancel_on_timeout
        )

        self._queue: deque[tuple[ThinkingChunk, dict[str, Any] | None]] = deque()
        self._busy = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: asyncio.Task[None] | None = None
        # Traversals abandoned at their deadline, kept referenced until they settle.
        self._abandoned: set[asyncio.Task[SupervisorResult]] = set()

        self.in_flight = 0
        self.max_in_flight = 0
        self.processed_count = 0

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    async def analyze_thinking(
        self, chunk: ThinkingChunk, context: dict[str, Any] | None = None
    ) -> AnalysisResult:
        """Analyze ``chunk`` now, or queue it and return a placeholder.

        Raises ``AnalysisTimeoutError`` when the traversal misses its deadline.
        """
        if self._busy or self._queue:
            self._queue.append((chunk, context))
            logger.debug("Chunk %s queued (%d waiting)", chunk.id, len(self._queue))
            return AnalysisResult.placeholder(chunk)

        self._busy = True
        self._idle.clear()
        try:
            return await self._process(chunk, context)
        finally:
            self._release()

    async def wait_idle(self) -> None:
        """Wait until the current call and every queued chunk are processed."""
        await self._idle.wait()

    def _release(self) -> None:
        if self._queue:
            # Stay busy: the worker owns the slot until the queue is empty.
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())
            return
        self._busy = False
        self._idle.set()

    async def _drain(self) -> None:
        try:
            while self._queue:
                chunk, context = self._queue.popleft()
                try:
                    await self._process(chunk, context)
                except AnalysisTimeoutError as e:
                    logger.warning("%s", e)
                except Exception as e:
                    logger.error("Analysis of queued chunk %s failed: %s", chunk.id, e)
        finally:
            self._busy = False
            self._drain_task = None
            self._idle.set()

    async def _process(
        self, chunk: ThinkingChunk, context: dict[str, Any] | None
    ) -> AnalysisResult:
        started = time.monotonic()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            results = [await self._analyze_tree(chunk, context)]
        finally:
            self.in_flight -= 1

        behavior_result = await self._analyze_behavior(chunk, context)
        if behavior_result is not None:
            results.append(behavior_result)

        analysis = AnalysisResult(
            chunk=chunk,
            results=results,
            total_time_ms=int((time.monotonic() - started) * 1000),
        )
        self.processed_count += 1

        await self.emitter.emit(
            SupervisorEvent(
                type=EventType.ANALYSIS_COMPLETE,
                message=f"Analyzed {chunk.id}",
                data={
                    "chunk_id": chunk.id,
                    "alerts": len(analysis.alerts),
                    "total_time_ms": analysis.total_time_ms,
                },
            )
        )

        for alert in analysis.alerts:
            await self._history.append(alert, chunk.content)
            await self.emitter.emit(
                SupervisorEvent(
                    type=EventType.ALERT_TRIGGERED,
                    message=alert.message or "",
                    data={"chunk_id": chunk.id, **alert.to_dict()},
                )
            )
        return analysis

    async def _analyze_tree(
        self, chunk: ThinkingChunk, context: dict[str, Any] | None
    ) -> SupervisorResult:
        task = asyncio.ensure_future(self._tree.analyze(chunk.content, context))
        done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        if task in done:
            return task.result()

        if self.cancel_on_timeout:
            task.cancel()
        else:
            self._abandoned.add(task)
            task.add_done_callback(self._discard_late_result)

        await self.emitter.emit(
            SupervisorEvent(
                type=EventType.ANALYSIS_TIMEOUT,
                message=f"Analysis of {chunk.id} timed out",
                data={"chunk_id": chunk.id, "timeout": self.timeout_seconds},
            )
        )
        raise AnalysisTimeoutError(chunk.id, self.timeout_seconds)

    def _discard_late_result(self, task: asyncio.Task[SupervisorResult]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Late traversal failed after its deadline: %s", exc)

    async def _analyze_behavior(
        self, chunk: ThinkingChunk, context: dict[str, Any] | None
    ) -> SupervisorResult | None:
        if self._behavior is None or not context or not context.get("original_request"):
            return None
        try:
            return await self._behavior.analyze(
                chunk.content,
                str(context["original_request"]),
                str(context.get("current_progress", "")),
            )
        except Exception as e:
            logger.error("Behavior analysis of %s failed: %s", chunk.id, e)
            return None
