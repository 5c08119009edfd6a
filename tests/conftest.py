"""Shared test fixtures and fakes for pytest."""

import asyncio
from typing import Any

import pytest

from overseer.errors import JudgeError
from overseer.judge import JudgeVerdict
from overseer.models import NodeKind, Rule, Severity, SupervisorConfig


class FakeJudge:
    """Rule judge answering from a table keyed by check text."""

    def __init__(
        self,
        verdicts: dict[str, JudgeVerdict] | None = None,
        failures: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.verdicts = verdicts or {}
        self.failures = failures or set()
        self.delay = delay
        self.calls: list[tuple[str, str, str | None]] = []
        self.active = 0
        self.max_active = 0

    async def check_rule(
        self, text: str, check: str, context_json: str | None = None
    ) -> JudgeVerdict:
        self.calls.append((text, check, context_json))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if check in self.failures:
                raise JudgeError(f"judge unavailable for {check!r}")
            return self.verdicts.get(check, JudgeVerdict(violated=False))
        finally:
            self.active -= 1

    def violate(self, check: str, explanation: str = "found it") -> None:
        self.verdicts[check] = JudgeVerdict(violated=True, explanation=explanation)


class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def lpush(self, key: str, value: str) -> "FakePipeline":
        self._ops.append(("lpush", (key, value)))
        return self

    def ltrim(self, key: str, start: int, end: int) -> "FakePipeline":
        self._ops.append(("ltrim", (key, start, end)))
        return self

    async def execute(self) -> list[Any]:
        results = []
        for name, args in self._ops:
            results.append(await getattr(self._redis, name)(*args))
        self._ops = []
        return results


class FakeRedis:
    """The handful of list commands the alert store uses."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def lpush(self, key: str, value: str) -> int:
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        self.lists[key] = self.lists.get(key, [])[start : end + 1]
        return True

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        return self.lists.get(key, [])[start : end + 1]

    async def delete(self, key: str) -> int:
        return 1 if self.lists.pop(key, None) is not None else 0


def make_rule(
    rule_id: str, severity: Severity = Severity.LOW, *, enabled: bool = True
) -> Rule:
    return Rule(
        id=rule_id,
        description=f"Rule {rule_id}",
        check=f"check {rule_id}",
        severity=severity,
        enabled=enabled,
    )


def make_specialist(
    node_id: str,
    rules: list[Rule],
    *,
    parent_id: str | None = None,
    keywords: list[str] | None = None,
    enabled: bool = True,
) -> SupervisorConfig:
    return SupervisorConfig(
        id=node_id,
        name=node_id.title(),
        kind=NodeKind.SPECIALIST,
        parent_id=parent_id,
        keywords=keywords or [],
        rules=rules,
        enabled=enabled,
    )


def make_coordinator(
    node_id: str, keywords: list[str] | None = None, rules: list[Rule] | None = None
) -> SupervisorConfig:
    return SupervisorConfig(
        id=node_id,
        name=node_id.title(),
        kind=NodeKind.COORDINATOR,
        keywords=keywords or [],
        rules=rules or [],
    )


@pytest.fixture
def judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
