"""
Supervisor configuration loading and validation.

A configuration file is a YAML document::

    project: billing
    version: "1.0"
    supervisors:
      - name: Security
        type: specialist
        parent: Technical
        keywords: [sql, token]
        rules:
          - id: sql-injection
            description: Use prepared statements
            severity: critical
            check: Check whether SQL is built by concatenation

Entries are validated one by one; invalid entries are reported and skipped,
valid ones still load.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigValidationError, OverseerError
from .models import NodeKind, Rule, Severity, SupervisorConfig
from .tree import ROOT_ID, SupervisorTree

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"\s+")


@dataclass
class LoadResult:
    configs: list[SupervisorConfig] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def extend(self, other: LoadResult) -> None:
        self.configs.extend(other.configs)
        self.errors.extend(other.errors)


def generate_id(project: str, name: str) -> str:
    return f"{project.lower()}-{_SLUG_RE.sub('-', name.strip().lower())}"


def parse_supervisors(
    entries: Iterable[Mapping[str, Any]], project: str | None = None
) -> LoadResult:
    """Validate raw supervisor mappings into configs, collecting errors."""
    result = LoadResult()
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            result.errors.append(f"Entry #{index + 1} is not a mapping")
            continue
        config, errors = _parse_supervisor(entry, project, index)
        if errors:
            result.errors.extend(errors)
        elif config is not None:
            result.configs.append(config)
    return result


def _parse_supervisor(
    entry: Mapping[str, Any], project: str | None, index: int
) -> tuple[SupervisorConfig | None, list[str]]:
    errors: list[str] = []
    name = str(entry.get("name") or "").strip()
    label = name or f"entry #{index + 1}"

    node_id = str(entry.get("id") or "").strip()
    if not node_id and name and project:
        node_id = generate_id(project, name)
    if not node_id:
        errors.append(f"{label}: id is required")
    if not name:
        errors.append(f"{label}: name is required")

    raw_type = str(entry.get("type") or "").strip().lower()
    kind: NodeKind | None = None
    if not raw_type:
        errors.append(f"{label}: type is required")
    else:
        try:
            kind = NodeKind(raw_type)
        except ValueError:
            errors.append(f"{label}: unknown type '{raw_type}'")
        if kind == NodeKind.ROUTER:
            errors.append(f"{label}: only the built-in root may be a router")

    parent_id = entry.get("parent_id")
    if not parent_id and entry.get("parent"):
        parent = str(entry["parent"]).strip()
        parent_id = generate_id(project, parent) if project else parent

    keywords = entry.get("keywords") or []
    if not isinstance(keywords, list):
        errors.append(f"{label}: keywords must be a list")
        keywords = []

    raw_rules = entry.get("rules") or []
    rules: list[Rule] = []
    if not isinstance(raw_rules, list):
        errors.append(f"{label}: rules must be a list")
    else:
        for rule_index, raw_rule in enumerate(raw_rules):
            rule, rule_errors = _parse_rule(raw_rule, label, rule_index)
            errors.extend(rule_errors)
            if rule is not None:
                rules.append(rule)

    if errors or kind is None:
        return None, errors

    return (
        SupervisorConfig(
            id=node_id,
            name=name,
            kind=kind,
            parent_id=str(parent_id) if parent_id else None,
            description=entry.get("description"),
            keywords=[str(k) for k in keywords],
            rules=rules,
            enabled=entry.get("enabled", True) is not False,
            always_active=bool(entry.get("always_active", False)),
        ),
        [],
    )


def _parse_rule(raw: Any, label: str, index: int) -> tuple[Rule | None, list[str]]:
    if not isinstance(raw, Mapping):
        return None, [f"{label}: rule #{index + 1} is not a mapping"]

    errors: list[str] = []
    rule_id = str(raw.get("id") or "").strip()
    rule_label = rule_id or f"#{index + 1}"
    if not rule_id:
        errors.append(f"{label}: rule {rule_label} has no id")
    if not raw.get("description"):
        errors.append(f"{label}: rule {rule_label} has no description")
    if not raw.get("check"):
        errors.append(f"{label}: rule {rule_label} has no check")
    if errors:
        return None, errors

    return (
        Rule(
            id=rule_id,
            description=str(raw["description"]),
            check=str(raw["check"]),
            severity=Severity.parse(raw.get("severity")),
            example_violation=raw.get("example_violation"),
            enabled=raw.get("enabled", True) is not False,
        ),
        [],
    )


def load_file(path: Path) -> LoadResult:
    """Load one YAML configuration file."""
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigValidationError(str(path), [str(e)]) from e

    if not document:
        return LoadResult()
    if isinstance(document, list):
        return parse_supervisors(document)
    if not isinstance(document, Mapping):
        raise ConfigValidationError(str(path), ["top level must be a mapping or a list"])

    supervisors = document.get("supervisors") or []
    if not isinstance(supervisors, list):
        raise ConfigValidationError(str(path), ["'supervisors' must be a list"])
    project = document.get("project")
    return parse_supervisors(supervisors, str(project) if project else None)


def load_path(path: Path) -> LoadResult:
    """Load a file, or every ``*.yaml``/``*.yml`` file of a directory."""
    if not path.is_dir():
        return load_file(path)

    result = LoadResult()
    for file_path in sorted(path.iterdir()):
        if file_path.suffix not in (".yaml", ".yml"):
            continue
        try:
            result.extend(load_file(file_path))
        except ConfigValidationError as e:
            result.errors.extend(f"{file_path.name}: {error}" for error in e.errors)
    return result


def apply_to_tree(tree: SupervisorTree, configs: Iterable[SupervisorConfig]) -> list[str]:
    """Add configs to the tree, parents first. Returns the errors collected."""
    pending = list(configs)
    errors: list[str] = []
    while pending:
        ready = [c for c in pending if not c.parent_id or c.parent_id in tree]
        if not ready:
            # Unknown parents: the tree attaches these to the root.
            ready = pending[:1]
        for config in ready:
            pending.remove(config)
            try:
                tree.add(config)
            except OverseerError as e:
                errors.append(str(e))
    for error in errors:
        logger.warning("Supervisor config skipped: %s", error)
    return errors


def dump_yaml(configs: Iterable[SupervisorConfig], project: str) -> str:
    """Serialise configs back to the YAML file format."""
    supervisors: list[dict[str, Any]] = []
    for config in configs:
        entry: dict[str, Any] = {
            "id": config.id,
            "name": config.name,
            "type": config.kind.value,
        }
        if config.parent_id and config.parent_id != ROOT_ID:
            entry["parent_id"] = config.parent_id
        if config.description:
            entry["description"] = config.description
        if config.keywords:
            entry["keywords"] = list(config.keywords)
        if config.rules:
            entry["rules"] = [rule.to_dict() for rule in config.rules]
        entry["enabled"] = config.enabled
        supervisors.append(entry)

    document = {"project": project, "version": "1.0", "supervisors": supervisors}
    return yaml.safe_dump(document, sort_keys=False, allow_unicode=True, width=10_000)
