"""Data model for the thinking supervisor."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Lower rank is more severe."""
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | None) -> Severity:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.LOW


_SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]


class NodeKind(str, Enum):
    ROUTER = "router"
    COORDINATOR = "coordinator"
    SPECIALIST = "specialist"


class ResultStatus(str, Enum):
    OK = "ok"
    ALERT = "alert"


class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchType(str, Enum):
    GLOBAL = "global"
    CHECKBOX = "checkbox"
    DECLARATION = "declaration"
    SEQUENCE = "sequence"
    CODE = "code"


# =============================================================================
# SUPERVISORS
# =============================================================================


@dataclass
class Rule:
    """A natural-language check evaluated by the rule judge."""

    id: str
    description: str
    check: str
    severity: Severity = Severity.LOW
    example_violation: str | None = None
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "severity": self.severity.value,
            "check": self.check,
            "enabled": self.enabled,
        }
        if self.example_violation:
            data["example_violation"] = self.example_violation
        return data


@dataclass
class SupervisorConfig:
    """Declarative description of one supervisor node."""

    id: str
    name: str
    kind: NodeKind
    parent_id: str | None = None
    description: str | None = None
    keywords: list[str] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    enabled: bool = True
    always_active: bool = False


@dataclass
class ThinkingChunk:
    """A bounded fragment of streamed reasoning text."""

    content: str
    id: str = field(default_factory=lambda: f"chunk-{uuid4().hex[:12]}")
    timestamp: int = field(default_factory=now_ms)
    message_id: str | None = None


@dataclass
class SupervisorResult:
    supervisor_id: str
    supervisor_name: str
    status: ResultStatus = ResultStatus.OK
    severity: Severity | None = None
    message: str | None = None
    evidence_snippet: str | None = None
    timestamp: int = field(default_factory=now_ms)
    processing_time_ms: int = 0
    inconclusive_rules: list[str] = field(default_factory=list)

    @property
    def is_alert(self) -> bool:
        return self.status == ResultStatus.ALERT

    def to_dict(self) -> dict[str, Any]:
        return {
            "supervisor_id": self.supervisor_id,
            "supervisor_name": self.supervisor_name,
            "status": self.status.value,
            "severity": self.severity.value if self.severity else None,
            "message": self.message,
            "evidence_snippet": self.evidence_snippet,
            "timestamp": self.timestamp,
            "processing_time_ms": self.processing_time_ms,
            "inconclusive_rules": list(self.inconclusive_rules),
        }


@dataclass
class AnalysisResult:
    """Outcome of one scheduler call for one chunk."""

    chunk: ThinkingChunk
    results: list[SupervisorResult] = field(default_factory=list)
    total_time_ms: int = 0
    timestamp: int = field(default_factory=now_ms)
    queued: bool = False

    @property
    def alerts(self) -> list[SupervisorResult]:
        return [r for r in self.results if r.is_alert]

    @classmethod
    def placeholder(cls, chunk: ThinkingChunk) -> AnalysisResult:
        return cls(chunk=chunk, queued=True)


# =============================================================================
# SCOPE
# =============================================================================


@dataclass
class TaskItem:
    name: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: ItemStatus = ItemStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "status": self.status.value}


@dataclass
class Task:
    title: str
    id: str = field(default_factory=lambda: str(uuid4()))
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    items: list[TaskItem] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    started_at: int | None = None
    completed_at: int | None = None


@dataclass
class CompletionMatch:
    """Evidence that a task item was finished."""

    item_name: str
    evidence: str
    confidence: float
    match_type: MatchType
    item_id: str | None = None

    @property
    def dedup_key(self) -> str:
        return self.item_id or self.item_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "evidence": self.evidence,
            "confidence": self.confidence,
            "match_type": self.match_type.value,
        }


# =============================================================================
# ALERT HISTORY / STOP GATE
# =============================================================================


@dataclass(frozen=True)
class AlertHistoryEntry:
    id: str
    supervisor_name: str
    message: str
    status: str
    timestamp: int
    chunk_preview: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "supervisor_name": self.supervisor_name,
            "message": self.message,
            "status": self.status,
            "timestamp": self.timestamp,
            "chunk_preview": self.chunk_preview,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertHistoryEntry:
        return cls(
            id=str(data["id"]),
            supervisor_name=str(data.get("supervisor_name", "")),
            message=str(data.get("message", "")),
            status=str(data.get("status", ResultStatus.ALERT.value)),
            timestamp=int(data.get("timestamp", 0)),
            chunk_preview=str(data.get("chunk_preview", "")),
        )


@dataclass
class StopDecision:
    allow: bool
    message: str = ""
    pending_items: list[str] | None = None
    pending_alerts: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"allow": self.allow, "message": self.message}
        if self.pending_items is not None:
            payload["pendingItems"] = self.pending_items
        if self.pending_alerts is not None:
            payload["pendingAlerts"] = self.pending_alerts
        return payload
