"""
Always-on behavior supervisor.

Runs next to the keyword-routed tree whenever the original user request is
known. Cheap phrase patterns gate every check; the rule judge only confirms
what a pattern already flagged.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time

from .config import settings
from .errors import JudgeError
from .judge import RuleJudge
from .models import ResultStatus, Severity, SupervisorResult
from .text import ELLIPSIS, fold

logger = logging.getLogger(__name__)

SCOPE_REDUCTION_PATTERNS = [
    "vou fazer só",
    "apenas essa",
    "por enquanto",
    "começando pela principal",
    "as outras depois",
    "primeiro só",
    "uma de cada vez",
    "vou focar em",
    "just this one",
    "only the first",
    "for now",
]

PROCRASTINATION_PATTERNS = [
    "deixo pra depois",
    "numa próxima",
    "depois a gente",
    "mais tarde",
    "em outra oportunidade",
    "leave it for later",
    "in a future iteration",
]

COMPLETION_PHRASES = [
    "pronto",
    "terminei",
    "feito",
    "concluído",
    "finalizado",
    "está pronto",
    "tarefa completa",
    "all done",
    "finished",
]

_SCOPE_CHECK = (
    "Check whether the reasoning reduces the scope of the original request "
    "without the user's authorization (doing only part of what was asked)."
)
_COMPLETENESS_CHECK = (
    "Check whether the reasoning declares the task complete while parts of the "
    "original request are still missing, given the current progress."
)


def find_pattern(text: str, patterns: list[str]) -> str | None:
    """First pattern contained in ``text``, ignoring case and accents."""
    folded = fold(text)
    for pattern in patterns:
        if fold(pattern) in folded:
            return pattern
    return None


def snippet_around(text: str, pattern: str, context_size: int = 50) -> str:
    index = fold(text).find(fold(pattern))
    if index == -1:
        return text[:100] + (ELLIPSIS if len(text) > 100 else "")

    start = max(0, index - context_size)
    end = min(len(text), index + len(pattern) + context_size)
    snippet = text[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(text):
        snippet = snippet + ELLIPSIS
    return snippet


class BehaviorSupervisor:
    """Detects scope reduction, procrastination and premature completion claims."""

    def __init__(
        self,
        judge: RuleJudge,
        *,
        detect_scope_reduction: bool | None = None,
        detect_procrastination: bool | None = None,
        verify_completeness: bool | None = None,
    ) -> None:
        self._judge = judge
        self.detect_scope_reduction = (
            settings.detect_scope_reduction
            if detect_scope_reduction is None
            else detect_scope_reduction
        )
        self.detect_procrastination = (
            settings.detect_procrastination
            if detect_procrastination is None
            else detect_procrastination
        )
        self.verify_completeness = (
            settings.verify_completeness if verify_completeness is None else verify_completeness
        )
        self.call_count = 0
        self.alert_count = 0

    async def analyze(
        self, thinking: str, original_request: str, current_progress: str = ""
    ) -> SupervisorResult | None:
        checks = []
        if self.detect_scope_reduction:
            checks.append(self._check_scope_reduction(thinking, original_request))
        if self.detect_procrastination:
            checks.append(self._check_procrastination(thinking))
        if self.verify_completeness:
            checks.append(self._check_completeness(thinking, original_request, current_progress))

        results = await asyncio.gather(*checks)
        self.call_count += 1

        alerts = [r for r in results if r is not None]
        if not alerts:
            return None
        self.alert_count += 1
        return min(alerts, key=lambda r: (r.severity or Severity.LOW).rank)

    def reset_stats(self) -> None:
        self.call_count = 0
        self.alert_count = 0

    async def _check_scope_reduction(
        self, thinking: str, original_request: str
    ) -> SupervisorResult | None:
        started = time.monotonic()
        pattern = find_pattern(thinking, SCOPE_REDUCTION_PATTERNS)
        if pattern is None:
            return None

        explanation = await self._confirm(
            thinking, _SCOPE_CHECK, {"original_request": original_request}
        )
        if explanation is None:
            return None
        return _alert(
            "behavior-scope",
            "Behavior.Scope",
            Severity.HIGH,
            f"Scope reduction detected: {explanation}",
            snippet_around(thinking, pattern),
            started,
        )

    async def _check_procrastination(self, thinking: str) -> SupervisorResult | None:
        started = time.monotonic()
        pattern = find_pattern(thinking, PROCRASTINATION_PATTERNS)
        if pattern is None:
            return None
        return _alert(
            "behavior-procrastination",
            "Behavior.Procrastination",
            Severity.MEDIUM,
            "Procrastination language detected",
            snippet_around(thinking, pattern),
            started,
        )

    async def _check_completeness(
        self, thinking: str, original_request: str, current_progress: str
    ) -> SupervisorResult | None:
        started = time.monotonic()
        if find_pattern(thinking, COMPLETION_PHRASES) is None:
            return None

        explanation = await self._confirm(
            thinking,
            _COMPLETENESS_CHECK,
            {"original_request": original_request, "current_progress": current_progress},
        )
        if explanation is None:
            return None
        return _alert(
            "behavior-completeness",
            "Behavior.Completeness",
            Severity.HIGH,
            f"Task declared complete but may be incomplete: {explanation}",
            thinking[:100] + (ELLIPSIS if len(thinking) > 100 else ""),
            started,
        )

    async def _confirm(self, thinking: str, check: str, context: dict[str, str]) -> str | None:
        """Explanation when the judge confirms a violation, else None."""
        try:
            verdict = await self._judge.check_rule(
                thinking, check, json.dumps(context, ensure_ascii=False)
            )
        except JudgeError as e:
            logger.warning("Behavior check inconclusive: %s", e)
            return None
        if not verdict.violated:
            return None
        return verdict.explanation or "Rule violated"


def _alert(
    supervisor_id: str,
    name: str,
    severity: Severity,
    message: str,
    snippet: str,
    started: float,
) -> SupervisorResult:
    return SupervisorResult(
        supervisor_id=supervisor_id,
        supervisor_name=name,
        status=ResultStatus.ALERT,
        severity=severity,
        message=message,
        evidence_snippet=snippet,
        processing_time_ms=int((time.monotonic() - started) * 1000),
    )
