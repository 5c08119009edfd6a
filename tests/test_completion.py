import pytest

from overseer.completion import CompletionDetector, check_alert_resolution, index_from_identifier
from overseer.events import EventEmitter, EventType, SupervisorEvent
from overseer.models import ItemStatus, MatchType, TaskItem


def _items(*names: str, completed: tuple[str, ...] = ()) -> list[TaskItem]:
    return [
        TaskItem(name=n, status=ItemStatus.COMPLETED if n in completed else ItemStatus.PENDING)
        for n in names
    ]


def test_checkbox_marker_matches_item_by_name() -> None:
    detector = CompletionDetector()
    items = _items("Login")

    matches = detector.process_output("Item Login - ✅", items)

    assert len(matches) == 1
    assert matches[0].item_name == "Login"
    assert matches[0].confidence == 0.9
    assert matches[0].match_type == MatchType.CHECKBOX


def test_global_phrase_matches_every_open_item() -> None:
    detector = CompletionDetector()
    items = _items("A", "B", "C", completed=("C",))
    items[1].status = ItemStatus.IN_PROGRESS

    matches = detector.process_output("Implementei tudo. Pronto!", items)

    assert [m.item_name for m in matches] == ["A", "B"]
    assert all(m.match_type == MatchType.GLOBAL for m in matches)
    assert all(m.confidence == 0.75 for m in matches)
    assert matches[0].evidence == "Implementei tudo. Pronto!"


@pytest.mark.parametrize(
    "text",
    [
        "Tudo pronto.",
        "All done!",
        "Fiz as mudanças.\nTerminei",
        "That's it.",
        "Implementei o login e o cadastro, tudo pronto.",
        "I'm all done.",
        "The whole refactor is finished.  \n",
    ],
)
def test_fragment_ending_in_a_phrase_is_global(text: str) -> None:
    matches = CompletionDetector().process_output(text, _items("First", "Second"))

    assert {m.match_type for m in matches} == {MatchType.GLOBAL}
    assert len(matches) == 2


def test_phrase_followed_by_more_work_is_not_global() -> None:
    items = _items("Signup form", "Password reset")

    assert CompletionDetector().process_output(
        "Finished, now moving on to the signup form.", items
    ) == []


def test_phrase_before_a_colon_only_marks_the_named_item() -> None:
    items = _items("Login page", "Password reset")

    matches = CompletionDetector().process_output(
        "Completed: the login page. Next is signup.", items
    )

    assert [(m.item_name, m.match_type) for m in matches] == [
        ("Login page", MatchType.CHECKBOX)
    ]


def test_phrase_inside_a_word_is_not_global() -> None:
    items = _items("Login", "Signup")

    assert CompletionDetector().process_output("The job is unfinished", items) == []


def test_global_evidence_is_the_tail_of_the_fragment() -> None:
    text = "x" * 150 + ". Finished."

    matches = CompletionDetector().process_output(text, _items("A"))

    assert matches[0].evidence == text[-100:]


def test_repeated_fragment_is_reported_once() -> None:
    emitter = EventEmitter()
    events: list[SupervisorEvent] = []
    emitter.on_event(events.append, EventType.COMPLETION_DETECTED)
    detector = CompletionDetector(emitter)
    items = _items("Login")

    first = detector.process_output("[x] Login", items)
    second = detector.process_output("[x] Login", items)

    assert len(first) == 1
    assert second == []
    assert len(events) == 1
    assert len(detector.detected_completions()) == 1


def test_reset_forgets_previous_detections() -> None:
    detector = CompletionDetector()
    items = _items("Login")
    detector.process_output("[x] Login", items)

    detector.reset()

    assert detector.response_buffer == ""
    assert len(detector.process_output("[x] Login", items)) == 1


def test_checkbox_fuzzy_match() -> None:
    items = _items("Validate user email address")

    matches = CompletionDetector().process_output(
        "✔ validate the user email address", items
    )

    assert len(matches) == 1
    assert matches[0].match_type == MatchType.CHECKBOX


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Item #2 concluído, seguindo para o 3", "Tests"),
        ("completei o item 3", "Docs"),
        ("Task B done", "Tests"),
        ("OK: item 1", "Setup"),
    ],
)
def test_declarations_resolve_by_index(text: str, expected: str) -> None:
    matches = CompletionDetector().process_output(text, _items("Setup", "Tests", "Docs"))

    assert [m.item_name for m in matches] == [expected]
    assert matches[0].match_type == MatchType.DECLARATION
    assert matches[0].confidence == 0.85


def test_declaration_skips_completed_items() -> None:
    items = _items("Setup", "Tests", completed=("Tests",))

    assert CompletionDetector().process_output("Item 2 concluído, agora o próximo", items) == []


def test_sequence_lines_with_completion_phrase() -> None:
    items = _items("Configure database", "Write tests", "Deploy")

    matches = CompletionDetector().process_output(
        "Done with the list:\n1. Configure db\n2. Write the tests", items
    )

    assert [m.item_name for m in matches] == ["Configure database", "Write tests"]
    assert {m.match_type for m in matches} == {MatchType.SEQUENCE}
    assert matches[0].confidence == 0.8


def test_sequence_lowercase_letters_resolve_by_index() -> None:
    items = _items("Setup", "Tests", "Docs")

    matches = CompletionDetector().process_output("Finalizei a lista:\na. Setup\nb. Tests", items)

    assert [m.item_name for m in matches] == ["Setup", "Tests"]
    assert {m.match_type for m in matches} == {MatchType.SEQUENCE}


def test_sequence_bullet_resolves_by_content() -> None:
    items = _items("Setup", "Configure database")

    matches = CompletionDetector().process_output(
        "Finalizei:\n- configure the database", items
    )

    assert [m.item_name for m in matches] == ["Configure database"]
    assert matches[0].match_type == MatchType.SEQUENCE


def test_sequence_needs_a_completion_signal() -> None:
    items = _items("Setup", "Tests")

    assert CompletionDetector().process_output("Plan:\n1. Setup\n2. Tests", items) == []


def test_code_artifact_matches_item() -> None:
    items = _items("Validate email input", "Parse config")

    created = CompletionDetector().process_output(
        "I created function validateEmail for the form", items
    )
    declared = CompletionDetector().process_output("def parse_config(path):\n    ...", items)

    assert [m.item_name for m in created] == ["Validate email input"]
    assert created[0].match_type == MatchType.CODE
    assert created[0].confidence == 0.7
    assert [m.item_name for m in declared] == ["Parse config"]


def test_higher_priority_heuristic_short_circuits() -> None:
    items = _items("Login", "Validate email input")

    matches = CompletionDetector().process_output(
        "✅ Login\nexport function validateEmail() {}", items
    )

    assert [m.match_type for m in matches] == [MatchType.CHECKBOX]


def test_completed_items_are_never_matched() -> None:
    items = _items("Login", completed=("Login",))

    assert CompletionDetector().process_output("[x] Login", items) == []


def test_index_from_identifier() -> None:
    assert index_from_identifier("1") == 0
    assert index_from_identifier("C") == 2


def test_alert_resolution_patterns() -> None:
    assert check_alert_resolution("All tests passed", "codigo-sem-teste")
    assert check_alert_resolution("I implemented all endpoints", "reducao-de-escopo")
    assert not check_alert_resolution("return", "placeholder-vazio")
    assert not check_alert_resolution("anything", "unknown-alert")
