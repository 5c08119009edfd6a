"""
Completion detection over agent output.

Heuristics run in strict priority order and stop at the first one that
produces a match:

1. global phrase ("pronto", "all done", ...): every open item, 0.75
2. checkbox markers on a line naming the item: 0.9
3. explicit declarations ("item #2 concluído"): 0.85
4. numbered, lettered or bulleted sequence lines: 0.8
5. code artifacts ("created function validateEmail"): 0.7

A given item is reported once per session.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence

from .events import EventEmitter, EventType, SupervisorEvent
from .models import CompletionMatch, ItemStatus, MatchType, TaskItem
from .text import jaccard, normalize_for_match, split_identifier

logger = logging.getLogger(__name__)

GLOBAL_CONFIDENCE = 0.75
CHECKBOX_CONFIDENCE = 0.9
DECLARATION_CONFIDENCE = 0.85
SEQUENCE_CONFIDENCE = 0.8
CODE_CONFIDENCE = 0.7

EVIDENCE_LENGTH = 100
BUFFER_LIMIT = 50_000

_GLOBAL_PHRASE = (
    r"(?:tudo\s+(?:pronto|feito|certo|completo)"
    r"|pronto|terminei|feito|finalizado|conclu[ií]do"
    r"|all\s+done|finished|completed?|that'?s\s+(?:it|all|everything)"
    r"|tarefas?\s+(?:conclu[ií]das?|completas?|finalizadas?))"
)
# The fragment must end in the phrase: "Finished, now the signup form" is not global.
_GLOBAL_RE = re.compile(rf"\b{_GLOBAL_PHRASE}[!.]?\s*$", re.IGNORECASE)
_LOOSE_GLOBAL_RE = re.compile(
    r"pronto|terminei|feito|conclu[íi]|finaliz|tudo certo|all done|finished"
    r"|completed?|that'?s it|done with",
    re.IGNORECASE,
)

_CHECKBOX_RE = re.compile(r"\[[xX]\]|☑|✓|✔|✅|\bdone\b|\bcompleted?\b", re.IGNORECASE)
_DONE_MARKER_RE = re.compile(
    r"\[[xX]\]|✓|✔|✅|\bdone\b|\bfeito\b|\bconclu[ií]do\b", re.IGNORECASE
)
_TRAILING_MARKER_RE = re.compile(
    r"\s*[-–—:]?\s*(?:\[[xX]\]|✓|✔|✅|done|feito|conclu[ií]do)\s*[!.]?\s*$", re.IGNORECASE
)

_IDENT = r"#?(?P<ident>\d+|[A-Z])\b"
_DECLARATION_PATTERNS = [
    re.compile(
        rf"\b(?i:item|tarefa|task|passo|step)\s*{_IDENT}\s*"
        r"(?i:conclu[ií]d[oa]|complet[oa]|completed?|feit[oa]|done|finished)"
    ),
    re.compile(
        r"\b(?i:conclu[ií]|completei|completed|fiz|finalizei|finished|terminei)\s+"
        rf"(?i:(?:o|the)\s+)?(?i:item|tarefa|passo|task|step)\s*{_IDENT}"
    ),
    re.compile(rf"\b(?i:pronto|done|feito|ok)[!:]\s*(?i:item|tarefa|task)?\s*{_IDENT}"),
]

_SEQUENCE_LINE_RE = re.compile(
    r"^[ \t]*(?:(?P<num>\d+)[.)]|(?P<letter>[A-Za-z])[.)]|[-*•])[ \t]+(?P<content>.+?)[ \t]*$",
    re.MULTILINE,
)

_CODE_PATTERNS = [
    re.compile(
        r"(?i:criei|created?|adicionei|added|implementei|implemented)\s+"
        r"(?i:(?:o|a|the)\s+)?"
        r"(?i:arquivo|file|função|funcao|function|método|metodo|method|classe|class)\s+"
        r"['\"`]?(?P<name>\w+)"
    ),
    re.compile(
        r"^[ \t]*(?:export\s+)?(?:async\s+)?(?:function|class|def|interface)\s+(?P<name>\w+)",
        re.MULTILINE,
    ),
    re.compile(r"\bexport\s+const\s+(?P<name>\w+)"),
]

_RESOLUTION_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "declaracao-sem-evidencia": [
        re.compile(r"npm run (compile|build|test)", re.IGNORECASE),
        re.compile(r"test(s)? pass(ed|ing)?", re.IGNORECASE),
        re.compile(r"✓|✔|passed", re.IGNORECASE),
        re.compile(r"output:", re.IGNORECASE),
        re.compile(r"resultado:", re.IGNORECASE),
    ],
    "numero-magico-display": [
        re.compile(r"\.length"),
        re.compile(r"\.count"),
        re.compile(r"\.size"),
        re.compile(r"array\."),
        re.compile(r"Object\.keys"),
        re.compile(r"\.filter\("),
        re.compile(r"\.reduce\("),
    ],
    "reducao-de-escopo": [
        re.compile(r"implement(ed|ing)?\s+all", re.IGNORECASE),
        re.compile(r"todos?\s+os\s+itens", re.IGNORECASE),
        re.compile(r"complete(d)?\s+all", re.IGNORECASE),
    ],
    "codigo-sem-teste": [
        re.compile(r"npm run (compile|build|test)", re.IGNORECASE),
        re.compile(r"jest|mocha|pytest|test", re.IGNORECASE),
        re.compile(r"passed|success", re.IGNORECASE),
    ],
    "placeholder-vazio": [
        re.compile(r"return\s+[^'\"`\s;]+"),
        re.compile(r"throw\s+new|raise\s+\w+"),
    ],
}


def index_from_identifier(identifier: str) -> int:
    """``"2"`` -> 1, ``"B"`` -> 1."""
    if identifier.isdigit():
        return int(identifier) - 1
    return ord(identifier.upper()) - ord("A")


def _item_at(items: Sequence[TaskItem], index: int) -> TaskItem | None:
    if 0 <= index < len(items):
        return items[index]
    return None


def _open(item: TaskItem | None) -> bool:
    return item is not None and item.status != ItemStatus.COMPLETED


def _match(item: TaskItem, evidence: str, confidence: float, kind: MatchType) -> CompletionMatch:
    return CompletionMatch(
        item_id=item.id,
        item_name=item.name,
        evidence=evidence,
        confidence=confidence,
        match_type=kind,
    )


# =============================================================================
# HEURISTICS
# =============================================================================


def detect_global(output: str, items: Sequence[TaskItem]) -> list[CompletionMatch]:
    text = output.strip()
    if not _GLOBAL_RE.search(text):
        return []
    evidence = text[-EVIDENCE_LENGTH:]
    return [
        _match(item, evidence, GLOBAL_CONFIDENCE, MatchType.GLOBAL)
        for item in items
        if _open(item)
    ]


def detect_checkbox(output: str, items: Sequence[TaskItem]) -> list[CompletionMatch]:
    matches: list[CompletionMatch] = []
    for line in output.splitlines():
        if not _CHECKBOX_RE.search(line):
            continue
        normalized_line = normalize_for_match(line)
        for item in items:
            if not _open(item):
                continue
            item_name = normalize_for_match(item.name)
            if not item_name:
                continue
            if item_name in normalized_line or jaccard(normalized_line, item_name) > 0.7:
                matches.append(_match(item, line.strip(), CHECKBOX_CONFIDENCE, MatchType.CHECKBOX))
    return matches


def detect_declaration(output: str, items: Sequence[TaskItem]) -> list[CompletionMatch]:
    matches: list[CompletionMatch] = []
    for pattern in _DECLARATION_PATTERNS:
        for found in pattern.finditer(output):
            item = _item_at(items, index_from_identifier(found.group("ident")))
            if _open(item):
                matches.append(
                    _match(item, found.group(0), DECLARATION_CONFIDENCE, MatchType.DECLARATION)
                )
    return matches


def detect_sequence(output: str, items: Sequence[TaskItem]) -> list[CompletionMatch]:
    matches: list[CompletionMatch] = []
    global_complete = bool(_LOOSE_GLOBAL_RE.search(output))

    for found in _SEQUENCE_LINE_RE.finditer(output):
        line = found.group(0)
        if not (global_complete or _DONE_MARKER_RE.search(line)):
            continue

        identifier = found.group("num") or found.group("letter")
        if identifier:
            item = _item_at(items, index_from_identifier(identifier))
        else:
            content = normalize_for_match(_TRAILING_MARKER_RE.sub("", found.group("content")))
            item = next(
                (i for i in items if jaccard(content, normalize_for_match(i.name)) > 0.6),
                None,
            )

        if _open(item):
            matches.append(_match(item, line.strip(), SEQUENCE_CONFIDENCE, MatchType.SEQUENCE))
    return matches


def detect_code(output: str, items: Sequence[TaskItem]) -> list[CompletionMatch]:
    matches: list[CompletionMatch] = []
    for pattern in _CODE_PATTERNS:
        for found in pattern.finditer(output):
            code_name = normalize_for_match(split_identifier(found.group("name")))
            if len(code_name) < 3:
                continue
            for item in items:
                if not _open(item):
                    continue
                item_name = normalize_for_match(item.name)
                if not item_name:
                    continue
                if (
                    code_name in item_name
                    or item_name in code_name
                    or jaccard(item_name, code_name) > 0.5
                ):
                    matches.append(_match(item, found.group(0), CODE_CONFIDENCE, MatchType.CODE))
    return matches


Heuristic = Callable[[str, Sequence[TaskItem]], list[CompletionMatch]]

HEURISTICS: list[Heuristic] = [
    detect_global,
    detect_checkbox,
    detect_declaration,
    detect_sequence,
    detect_code,
]


class CompletionDetector:
    """Session-scoped detector. Call ``reset()`` between tasks."""

    def __init__(self, emitter: EventEmitter | None = None) -> None:
        self.emitter = emitter or EventEmitter()
        self._buffer = ""
        self._detected: dict[str, CompletionMatch] = {}

    @property
    def response_buffer(self) -> str:
        return self._buffer

    def process_output(self, output: str, items: Sequence[TaskItem]) -> list[CompletionMatch]:
        """Return the matches in ``output`` that were not reported before."""
        self._buffer = (self._buffer + output)[-BUFFER_LIMIT:]

        candidates: list[CompletionMatch] = []
        for heuristic in HEURISTICS:
            candidates = heuristic(output, items)
            if candidates:
                break

        new_matches: list[CompletionMatch] = []
        for match in candidates:
            key = match.dedup_key
            if key in self._detected:
                continue
            self._detected[key] = match
            new_matches.append(match)
            logger.info(
                "Completion detected: %s (%s, %.2f)",
                match.item_name,
                match.match_type.value,
                match.confidence,
            )
            self.emitter.emit_nowait(
                SupervisorEvent(
                    type=EventType.COMPLETION_DETECTED,
                    message=f"Completed: {match.item_name}",
                    data=match.to_dict(),
                )
            )
        return new_matches

    def detected_completions(self) -> list[CompletionMatch]:
        return list(self._detected.values())

    def reset(self) -> None:
        self._buffer = ""
        self._detected.clear()


def check_alert_resolution(output: str, alert_type: str) -> bool:
    """Whether ``output`` carries evidence that resolves an alert of ``alert_type``."""
    return any(p.search(output) for p in _RESOLUTION_PATTERNS.get(alert_type, []))


def resolution_types() -> Iterable[str]:
    return _RESOLUTION_PATTERNS.keys()
