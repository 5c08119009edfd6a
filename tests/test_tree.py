import pytest
from conftest import FakeJudge, make_coordinator, make_rule, make_specialist

from overseer.errors import DuplicateNodeError, OverseerError, UnknownNodeError
from overseer.models import NodeKind, ResultStatus, Severity, SupervisorConfig
from overseer.text import evidence_snippet
from overseer.tree import ROOT_ID, SupervisorTree


def _tree(judge: FakeJudge, *configs: SupervisorConfig) -> SupervisorTree:
    tree = SupervisorTree(judge)
    for config in configs:
        tree.add(config)
    return tree


@pytest.mark.asyncio
async def test_specialist_with_clean_verdicts_is_ok(judge: FakeJudge) -> None:
    tree = _tree(
        judge,
        make_specialist("security", [make_rule("a", Severity.HIGH), make_rule("b")]),
    )

    result = await tree.analyze("SELECT * FROM users")

    assert result.status == ResultStatus.OK
    assert len(judge.calls) == 2
    assert tree.get("security").call_count == 1
    assert tree.get("security").alert_count == 0


@pytest.mark.asyncio
async def test_most_severe_violation_wins(judge: FakeJudge) -> None:
    judge.violate("check medium", "minor issue")
    judge.violate("check critical", "string concatenation")
    tree = _tree(
        judge,
        make_specialist(
            "security",
            [make_rule("medium", Severity.MEDIUM), make_rule("critical", Severity.CRITICAL)],
        ),
    )

    node = tree.get("security")
    result = await tree.analyze("query = 'SELECT ' + user_id")

    assert result.severity == Severity.CRITICAL
    assert node.last_result is not None
    assert node.last_result.message == "Rule critical: string concatenation"
    assert node.alert_count == 1


@pytest.mark.asyncio
async def test_equal_severity_keeps_first_rule(judge: FakeJudge) -> None:
    judge.violate("check first")
    judge.violate("check second")
    tree = _tree(
        judge,
        make_specialist(
            "style", [make_rule("first", Severity.HIGH), make_rule("second", Severity.HIGH)]
        ),
    )

    await tree.analyze("text")

    last = tree.get("style").last_result
    assert last is not None
    assert last.message is not None
    assert last.message.startswith("Rule first")


@pytest.mark.asyncio
async def test_disabled_specialist_never_calls_judge(judge: FakeJudge) -> None:
    tree = _tree(
        judge,
        make_specialist("off", [make_rule("a")], enabled=False),
        make_specialist("no-rules", [make_rule("b", enabled=False)]),
    )

    result = await tree.analyze("anything")

    assert result.status == ResultStatus.OK
    assert judge.calls == []


@pytest.mark.asyncio
async def test_judge_failure_keeps_sibling_verdicts() -> None:
    judge = FakeJudge(failures={"check broken"})
    judge.violate("check working", "bad")
    tree = _tree(
        judge,
        make_specialist(
            "mixed", [make_rule("broken", Severity.CRITICAL), make_rule("working", Severity.LOW)]
        ),
    )

    result = await tree.analyze("text")

    assert result.status == ResultStatus.ALERT
    assert result.severity == Severity.LOW
    assert result.inconclusive_rules == ["broken"]


@pytest.mark.asyncio
async def test_rules_are_judged_concurrently() -> None:
    judge = FakeJudge(delay=0.02)
    tree = _tree(
        judge, make_specialist("many", [make_rule(str(i)) for i in range(4)])
    )

    await tree.analyze("text")

    assert judge.max_active == 4


@pytest.mark.asyncio
async def test_coordinator_routes_by_keyword_ignoring_accents(judge: FakeJudge) -> None:
    judge.violate("check sql")
    tree = _tree(
        judge,
        make_coordinator("technical", keywords=["função", "sql"]),
        make_specialist(
            "security", [make_rule("sql", Severity.HIGH)], parent_id="technical", keywords=["sql"]
        ),
        make_specialist("ui", [make_rule("ui")], parent_id="technical", keywords=["button"]),
    )

    result = await tree.analyze("A FUNCAO monta o SQL na mão")

    assert result.status == ResultStatus.ALERT
    assert result.supervisor_name == "Router > Technical > Security"
    assert [check for _, check, _ in judge.calls] == ["check sql"]
    assert tree.get("ui").call_count == 0


@pytest.mark.asyncio
async def test_branch_without_matching_children_is_ok(judge: FakeJudge) -> None:
    tree = _tree(
        judge,
        make_coordinator("business", keywords=["invoice"]),
        make_specialist("billing", [make_rule("a")], parent_id="business", keywords=["tax"]),
    )

    result = await tree.analyze("nothing relevant here")

    assert result.status == ResultStatus.OK
    assert judge.calls == []
    assert tree.root.call_count == 1


@pytest.mark.asyncio
async def test_coordinator_own_rules_are_evaluated(judge: FakeJudge) -> None:
    judge.violate("check own")
    tree = _tree(
        judge,
        make_coordinator("behavior", keywords=["later"], rules=[make_rule("own", Severity.MEDIUM)]),
    )

    result = await tree.analyze("I will do it later")

    assert result.severity == Severity.MEDIUM
    assert result.supervisor_name == "Router > Behavior"


@pytest.mark.asyncio
async def test_evidence_snippet_is_bounded(judge: FakeJudge) -> None:
    judge.violate("check a")
    tree = _tree(judge, make_specialist("s", [make_rule("a")]))

    result = await tree.analyze("word " * 60)

    assert result.evidence_snippet is not None
    assert len(result.evidence_snippet) <= 100


def test_evidence_snippet_prefers_sentence_break() -> None:
    text = "A" * 60 + ". " + "B" * 80
    assert evidence_snippet(text) == "A" * 60 + "."

    text = "A" * 60 + ", " + "B" * 80
    assert evidence_snippet(text) == "A" * 60 + "..."

    assert evidence_snippet("C" * 150) == "C" * 97 + "..."
    assert evidence_snippet("short") == "short"


def test_duplicate_ids_are_rejected(judge: FakeJudge) -> None:
    tree = _tree(judge, make_specialist("a", []))

    with pytest.raises(DuplicateNodeError):
        tree.add(make_specialist("a", []))


def test_unknown_parent_attaches_to_root(judge: FakeJudge) -> None:
    tree = _tree(judge, make_specialist("orphan", [], parent_id="missing"))

    parent = tree.parent_of("orphan")
    assert parent is not None
    assert parent.id == ROOT_ID


def test_specialist_cannot_own_children(judge: FakeJudge) -> None:
    tree = _tree(judge, make_specialist("leaf", []))

    with pytest.raises(OverseerError):
        tree.add(make_specialist("child", [], parent_id="leaf"))


def test_remove_drops_whole_subtree(judge: FakeJudge) -> None:
    tree = _tree(
        judge,
        make_coordinator("technical"),
        make_specialist("security", [], parent_id="technical"),
    )

    removed = tree.remove("technical")

    assert set(removed) == {"technical", "security"}
    assert "security" not in tree
    assert tree.children_of(ROOT_ID) == []
    with pytest.raises(OverseerError):
        tree.remove(ROOT_ID)
    with pytest.raises(UnknownNodeError):
        tree.get("technical")


def test_rule_management_and_stats(judge: FakeJudge) -> None:
    tree = _tree(judge, make_specialist("s", [make_rule("a")]))

    tree.add_rule("s", make_rule("b"))
    tree.toggle_rule("s", "a", False)
    tree.set_enabled("s", False)

    stats = tree.stats()
    assert stats.total_nodes == 2
    assert stats.active_nodes == 1
    assert stats.total_rules == 1

    tree.remove_rule("s", "b")
    assert tree.get("s").rules[0].id == "a"
    assert len(tree.get("s").rules) == 1

    with pytest.raises(OverseerError):
        tree.set_enabled(ROOT_ID, False)


def test_as_tree_nests_children(judge: FakeJudge) -> None:
    tree = _tree(
        judge,
        make_coordinator("technical"),
        make_specialist("security", [make_rule("a")], parent_id="technical"),
    )

    view = tree.as_tree()

    assert view["kind"] == NodeKind.ROUTER.value
    assert view["children"][0]["id"] == "technical"
    assert view["children"][0]["children"][0]["rules_count"] == 1
