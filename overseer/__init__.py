"""
Overseer

Real-time supervision of a coding agent: classifies streamed reasoning
against a hierarchy of rules, infers completed work items from the agent's
output and decides whether the agent may stop.
"""

__version__ = "0.1.0"

# Configuration
from overseer.config import Settings

# Completion detection
from overseer.completion import CompletionDetector, check_alert_resolution

# Stop gate
from overseer.gate import ProgressSnapshot, StopGate

# Alert history
from overseer.history import AlertHistory, JsonFileAlertStore, MemoryAlertStore, RedisAlertStore

# Rule judge
from overseer.judge import AnthropicJudge, JudgeVerdict, RuleJudge

# Core models
from overseer.models import (
    AlertHistoryEntry,
    AnalysisResult,
    CompletionMatch,
    ItemStatus,
    MatchType,
    NodeKind,
    Rule,
    Severity,
    StopDecision,
    SupervisorConfig,
    SupervisorResult,
    TaskItem,
    ThinkingChunk,
)

# Session wiring
from overseer.runtime import SupervisorRuntime

# Scheduling
from overseer.scheduler import AnalysisScheduler

# Task scope
from overseer.scope import TaskScope, extract_scope

# Classification tree
from overseer.tree import SupervisorNode, SupervisorTree

__all__ = [
    # Version
    "__version__",
    # Models
    "AlertHistoryEntry",
    "AnalysisResult",
    "CompletionMatch",
    "ItemStatus",
    "MatchType",
    "NodeKind",
    "Rule",
    "Severity",
    "StopDecision",
    "SupervisorConfig",
    "SupervisorResult",
    "TaskItem",
    "ThinkingChunk",
    # Config
    "Settings",
    # Judge
    "AnthropicJudge",
    "JudgeVerdict",
    "RuleJudge",
    # Tree
    "SupervisorNode",
    "SupervisorTree",
    # Scheduler
    "AnalysisScheduler",
    # History
    "AlertHistory",
    "JsonFileAlertStore",
    "MemoryAlertStore",
    "RedisAlertStore",
    # Completion
    "CompletionDetector",
    "check_alert_resolution",
    # Scope
    "TaskScope",
    "extract_scope",
    # Gate
    "ProgressSnapshot",
    "StopGate",
    # Runtime
    "SupervisorRuntime",
]
