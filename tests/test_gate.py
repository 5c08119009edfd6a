import pytest

from overseer.events import EventEmitter, EventType, SupervisorEvent
from overseer.gate import ALLOW_MESSAGE, BYPASS_MESSAGE, ProgressSnapshot, StopGate
from overseer.history import AlertHistory, MemoryAlertStore
from overseer.models import AlertHistoryEntry, ItemStatus, ResultStatus, SupervisorResult, now_ms
from overseer.scope import TaskScope


def _scope_gate(history: AlertHistory | None = None) -> tuple[TaskScope, StopGate]:
    scope = TaskScope()

    def snapshot() -> ProgressSnapshot:
        return ProgressSnapshot(
            percentage=scope.progress().percentage,
            pending_items=[i.name for i in scope.pending_items()],
        )

    return scope, StopGate(history or AlertHistory(), snapshot)


def _alert(message: str) -> SupervisorResult:
    return SupervisorResult(
        supervisor_id="security",
        supervisor_name="Router > Security",
        status=ResultStatus.ALERT,
        message=message,
    )


def test_incomplete_task_blocks_stop() -> None:
    scope, gate = _scope_gate()
    task = scope.create_task("Build", ["A", "B", "C"])
    scope.update_item_status(task.items[2].id, ItemStatus.COMPLETED)

    decision = gate.check_stop()

    assert not decision.allow
    assert decision.pending_items == ["A", "B"]
    assert decision.pending_alerts == []
    assert decision.message.startswith("SUPERVISOR: stop blocked.")
    assert "- Task incomplete: 2 pending item(s)" in decision.message
    assert "  o A" in decision.message
    assert decision.message.endswith("Continue working or use /bypass to force stop.")


def test_finished_task_allows_stop() -> None:
    scope, gate = _scope_gate()
    task = scope.create_task("Build", ["A"])
    scope.update_item_status(task.items[0].id, ItemStatus.COMPLETED)

    decision = gate.check_stop({"session": "abc"})

    assert decision.allow
    assert decision.message == ALLOW_MESSAGE
    assert decision.to_dict() == {"allow": True, "message": ALLOW_MESSAGE}


def test_no_task_allows_stop() -> None:
    gate = StopGate(AlertHistory())

    assert gate.check_stop().allow


def test_bypass_is_consumed_by_one_check() -> None:
    emitter = EventEmitter()
    bypass_events: list[SupervisorEvent] = []
    emitter.on_event(bypass_events.append, EventType.BYPASS_CHANGED)
    scope = TaskScope()
    scope.create_task("Build", ["A"])
    gate = StopGate(
        AlertHistory(),
        lambda: ProgressSnapshot(percentage=0, pending_items=["A"]),
        emitter=emitter,
    )

    gate.allow_next_stop()
    assert gate.bypass_active
    first = gate.check_stop()
    second = gate.check_stop()

    assert first.allow
    assert first.message == BYPASS_MESSAGE
    assert not second.allow
    assert not gate.bypass_active
    assert [e.data["bypass"] for e in bypass_events] == [True, False]


def test_long_pending_list_is_abbreviated() -> None:
    scope, gate = _scope_gate()
    scope.create_task("Build", [f"item {i}" for i in range(7)])

    decision = gate.check_stop()

    assert decision.pending_items == [f"item {i}" for i in range(5)]
    assert "  ... and 2 more" in decision.message
    assert "  o item 5" not in decision.message


@pytest.mark.asyncio
async def test_recent_alerts_block_stop() -> None:
    history = AlertHistory()
    for i in range(4):
        await history.append(_alert(f"problem {i}"), "chunk")
    gate = StopGate(history)

    decision = gate.check_stop()

    assert not decision.allow
    assert decision.pending_alerts == ["problem 3", "problem 2", "problem 1"]
    assert "- 4 pending alert(s)" in decision.message
    assert "  ! problem 3" in decision.message
    assert "  ! problem 0" not in decision.message


@pytest.mark.asyncio
async def test_alerts_outside_the_window_are_ignored() -> None:
    store = MemoryAlertStore()
    store.entries = [
        AlertHistoryEntry(
            id="old",
            supervisor_name="Router > Security",
            message="stale",
            status="alert",
            timestamp=now_ms() - 600_000,
            chunk_preview="",
        )
    ]
    history = AlertHistory(store)
    await history.load()

    assert StopGate(history, alert_window_seconds=300).check_stop().allow


def test_status_reports_counts() -> None:
    scope, gate = _scope_gate()
    task = scope.create_task("Build", ["A", "B", "C"])
    scope.update_item_status(task.items[0].id, ItemStatus.COMPLETED)

    assert gate.status() == {
        "running": True,
        "progress": 33,
        "pendingItems": 2,
        "pendingAlerts": 0,
        "canStop": False,
    }


def test_stop_checks_are_published() -> None:
    emitter = EventEmitter()
    checked: list[SupervisorEvent] = []
    emitter.on_event(checked.append, EventType.STOP_CHECKED)
    gate = StopGate(AlertHistory(), emitter=emitter)

    gate.check_stop({"reason": "end_turn"})

    assert checked[0].data["context"] == {"reason": "end_turn"}
    assert checked[0].data["decision"]["allow"] is True
