"""
Rule-classification tree.

Nodes are a closed set of kinds (router, coordinator, specialist) dispatched
on their ``kind`` tag. The tree owns every node in an id-keyed arena; child
order and parent links are arena indexes, never object references.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import Any

from .errors import DuplicateNodeError, OverseerError, UnknownNodeError
from .judge import JudgeVerdict, RuleJudge
from .models import (
    NodeKind,
    ResultStatus,
    Rule,
    Severity,
    SupervisorConfig,
    SupervisorResult,
)
from .text import contains_keyword, evidence_snippet

logger = logging.getLogger(__name__)

ROOT_ID = "root-router"
ROOT_NAME = "Router"
DEFAULT_EXPLANATION = "Rule violated"


@dataclass
class SupervisorNode:
    """One supervisor plus its runtime counters."""

    config: SupervisorConfig
    call_count: int = 0
    alert_count: int = 0
    last_result: SupervisorResult | None = None

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def kind(self) -> NodeKind:
        return self.config.kind

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def keywords(self) -> list[str]:
        return self.config.keywords

    @property
    def rules(self) -> list[Rule]:
        return self.config.rules

    def enabled_rules(self) -> list[Rule]:
        return [r for r in self.config.rules if r.enabled]

    def matches(self, text: str) -> bool:
        """A node without keywords is relevant to every chunk."""
        if not self.config.keywords:
            return True
        return contains_keyword(text, self.config.keywords)

    def record(self, result: SupervisorResult) -> SupervisorResult:
        self.call_count += 1
        if result.is_alert:
            self.alert_count += 1
        self.last_result = result
        return result


@dataclass
class TreeStats:
    total_nodes: int = 0
    active_nodes: int = 0
    total_rules: int = 0
    total_calls: int = 0
    total_alerts: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_nodes": self.total_nodes,
            "active_nodes": self.active_nodes,
            "total_rules": self.total_rules,
            "total_calls": self.total_calls,
            "total_alerts": self.total_alerts,
        }


@dataclass
class _Violation:
    rule: Rule
    verdict: JudgeVerdict


@dataclass
class _RuleOutcome:
    violations: list[_Violation] = field(default_factory=list)
    inconclusive: list[str] = field(default_factory=list)


class SupervisorTree:
    """Arena-backed supervisor hierarchy with a single root router."""

    def __init__(self, judge: RuleJudge | None = None, *, root_name: str = ROOT_NAME) -> None:
        self._judge = judge
        root = SupervisorNode(
            SupervisorConfig(id=ROOT_ID, name=root_name, kind=NodeKind.ROUTER, always_active=True)
        )
        self._nodes: dict[str, SupervisorNode] = {ROOT_ID: root}
        self._children: dict[str, list[str]] = {ROOT_ID: []}
        self._parents: dict[str, str] = {}

    # =========================================================================
    # STRUCTURE
    # =========================================================================

    @property
    def root(self) -> SupervisorNode:
        return self._nodes[ROOT_ID]

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def find(self, node_id: str) -> SupervisorNode | None:
        return self._nodes.get(node_id)

    def get(self, node_id: str) -> SupervisorNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(f"Unknown supervisor: {node_id}")
        return node

    def parent_of(self, node_id: str) -> SupervisorNode | None:
        self.get(node_id)
        parent_id = self._parents.get(node_id)
        return self._nodes[parent_id] if parent_id else None

    def children_of(self, node_id: str) -> list[SupervisorNode]:
        self.get(node_id)
        return [self._nodes[c] for c in self._children.get(node_id, [])]

    def walk(self, node_id: str = ROOT_ID) -> Iterator[SupervisorNode]:
        """Pre-order traversal."""
        stack = [node_id]
        while stack:
            current = stack.pop()
            yield self._nodes[current]
            stack.extend(reversed(self._children.get(current, [])))

    def add(self, config: SupervisorConfig) -> SupervisorNode:
        if config.id in self._nodes:
            raise DuplicateNodeError(f"Supervisor id already exists: {config.id}")
        if config.kind == NodeKind.ROUTER:
            raise OverseerError(f"Only the root may be a router: {config.id}")

        parent_id = config.parent_id or ROOT_ID
        if parent_id not in self._nodes:
            logger.warning(
                "Parent %s of %s not found, attaching to the root", parent_id, config.id
            )
            parent_id = ROOT_ID
        if self._nodes[parent_id].kind == NodeKind.SPECIALIST:
            raise OverseerError(
                f"Specialist {parent_id} cannot own children (adding {config.id})"
            )

        node = SupervisorNode(
            replace(
                config,
                parent_id=parent_id,
                keywords=list(config.keywords),
                rules=[replace(r) for r in config.rules],
            )
        )
        self._nodes[config.id] = node
        self._children[config.id] = []
        self._children[parent_id].append(config.id)
        self._parents[config.id] = parent_id
        return node

    def remove(self, node_id: str) -> list[str]:
        """Remove a node and its whole subtree. Returns the removed ids."""
        if node_id == ROOT_ID:
            raise OverseerError("The root router cannot be removed")
        self.get(node_id)

        removed = [n.id for n in self.walk(node_id)]
        parent_id = self._parents[node_id]
        self._children[parent_id].remove(node_id)
        for removed_id in removed:
            del self._nodes[removed_id]
            del self._children[removed_id]
            self._parents.pop(removed_id, None)
        return removed

    def set_enabled(self, node_id: str, enabled: bool) -> None:
        node = self.get(node_id)
        if not enabled and node.config.always_active:
            raise OverseerError(f"Supervisor {node.name} is always active")
        node.config.enabled = enabled

    def add_rule(self, node_id: str, rule: Rule) -> None:
        node = self.get(node_id)
        if any(r.id == rule.id for r in node.rules):
            raise DuplicateNodeError(f"Rule {rule.id} already exists in {node.name}")
        node.rules.append(rule)

    def remove_rule(self, node_id: str, rule_id: str) -> None:
        node = self.get(node_id)
        node.config.rules = [r for r in node.rules if r.id != rule_id]

    def toggle_rule(self, node_id: str, rule_id: str, enabled: bool) -> None:
        for rule in self.get(node_id).rules:
            if rule.id == rule_id:
                rule.enabled = enabled
                return
        raise UnknownNodeError(f"Unknown rule {rule_id} in {node_id}")

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    async def analyze(self, text: str, context: dict[str, Any] | None = None) -> SupervisorResult:
        """Classify ``text`` starting from the root router."""
        return await self._analyze_node(self.root, text, context)

    async def _analyze_node(
        self, node: SupervisorNode, text: str, context: dict[str, Any] | None
    ) -> SupervisorResult:
        if node.kind == NodeKind.SPECIALIST:
            return await self._analyze_specialist(node, text, context)
        return await self._analyze_branch(node, text, context)

    async def _analyze_specialist(
        self, node: SupervisorNode, text: str, context: dict[str, Any] | None
    ) -> SupervisorResult:
        started = time.monotonic()
        rules = node.enabled_rules()
        if not node.enabled or not rules:
            return node.record(_ok(node, started))

        outcome = await self._evaluate_rules(rules, text, context)
        return node.record(_rules_result(node, outcome, text, started))

    async def _analyze_branch(
        self, node: SupervisorNode, text: str, context: dict[str, Any] | None
    ) -> SupervisorResult:
        started = time.monotonic()
        if not node.enabled:
            return node.record(_ok(node, started))

        rules = node.enabled_rules()
        selected = [
            child
            for child in self.children_of(node.id)
            if child.enabled and child.matches(text)
        ]
        if not selected and not rules:
            return node.record(_ok(node, started))

        own_outcome, *child_results = await asyncio.gather(
            self._evaluate_rules(rules, text, context),
            *(self._analyze_child(child, text, context) for child in selected),
        )
        own_result = _rules_result(node, own_outcome, text, started) if rules else None

        return node.record(_aggregate(node, own_result, child_results, started))

    async def _analyze_child(
        self, child: SupervisorNode, text: str, context: dict[str, Any] | None
    ) -> SupervisorResult:
        try:
            return await self._analyze_node(child, text, context)
        except Exception as exc:
            # Fail open: a broken branch never blocks the others.
            logger.error("Supervisor %s failed: %s", child.name, exc)
            return SupervisorResult(supervisor_id=child.id, supervisor_name=child.name)

    async def _evaluate_rules(
        self, rules: list[Rule], text: str, context: dict[str, Any] | None
    ) -> _RuleOutcome:
        if not rules:
            return _RuleOutcome()
        if self._judge is None:
            raise OverseerError("No rule judge configured")
        judge = self._judge
        context_json = json.dumps(context, default=str, ensure_ascii=False) if context else None
        verdicts = await asyncio.gather(
            *(judge.check_rule(text, rule.check, context_json) for rule in rules),
            return_exceptions=True,
        )

        outcome = _RuleOutcome()
        for rule, verdict in zip(rules, verdicts, strict=True):
            if isinstance(verdict, BaseException):
                if not isinstance(verdict, Exception):
                    raise verdict
                logger.warning("Rule %s inconclusive: %s", rule.id, verdict)
                outcome.inconclusive.append(rule.id)
            elif verdict.violated:
                outcome.violations.append(_Violation(rule, verdict))
        return outcome

    # =========================================================================
    # REPORTING
    # =========================================================================

    def stats(self) -> TreeStats:
        stats = TreeStats()
        for node in self.walk():
            stats.total_nodes += 1
            if node.enabled:
                stats.active_nodes += 1
            stats.total_rules += len(node.enabled_rules())
            stats.total_calls += node.call_count
            stats.total_alerts += node.alert_count
        return stats

    def as_tree(self, node_id: str = ROOT_ID) -> dict[str, Any]:
        node = self.get(node_id)
        return {
            "id": node.id,
            "name": node.name,
            "kind": node.kind.value,
            "enabled": node.enabled,
            "rules_count": len(node.rules),
            "call_count": node.call_count,
            "alert_count": node.alert_count,
            "children": [self.as_tree(c) for c in self._children[node_id]],
        }

    def configs(self) -> list[SupervisorConfig]:
        """Configs of every non-root node, parents before children."""
        return [replace(n.config) for n in self.walk() if n.id != ROOT_ID]


def most_severe(results: list[SupervisorResult]) -> SupervisorResult | None:
    """First alert with the highest severity, or None."""
    alerts = [r for r in results if r.is_alert]
    if not alerts:
        return None
    return min(alerts, key=lambda r: (r.severity or Severity.LOW).rank)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _ok(node: SupervisorNode, started: float) -> SupervisorResult:
    return SupervisorResult(
        supervisor_id=node.id,
        supervisor_name=node.name,
        processing_time_ms=_elapsed_ms(started),
    )


def _rules_result(
    node: SupervisorNode, outcome: _RuleOutcome, text: str, started: float
) -> SupervisorResult:
    result = _ok(node, started)
    result.inconclusive_rules = list(outcome.inconclusive)
    if not outcome.violations:
        return result

    # min() keeps the first-encountered rule among equal severities.
    winner = min(outcome.violations, key=lambda v: v.rule.severity.rank)
    explanation = winner.verdict.explanation or DEFAULT_EXPLANATION
    result.status = ResultStatus.ALERT
    result.severity = winner.rule.severity
    result.message = f"{winner.rule.description}: {explanation}"
    result.evidence_snippet = evidence_snippet(text, 100)
    return result


def _aggregate(
    node: SupervisorNode,
    own_result: SupervisorResult | None,
    child_results: list[SupervisorResult],
    started: float,
) -> SupervisorResult:
    candidates = ([own_result] if own_result else []) + child_results
    result = _ok(node, started)
    for candidate in candidates:
        result.inconclusive_rules.extend(candidate.inconclusive_rules)

    winner = most_severe(candidates)
    if winner is None:
        return result

    result.status = ResultStatus.ALERT
    result.severity = winner.severity
    result.message = winner.message
    result.evidence_snippet = winner.evidence_snippet
    if winner is not own_result:
        result.supervisor_name = f"{node.name} > {winner.supervisor_name}"
    return result
