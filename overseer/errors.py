"""Error types and helpers for the thinking supervisor."""

from __future__ import annotations

import click


class OverseerError(RuntimeError):
    """Base class for supervisor errors."""


class JudgeError(OverseerError):
    """Raised when the rule judge cannot produce a verdict."""


class AnalysisTimeoutError(OverseerError):
    """Raised when a tree traversal misses its deadline."""

    def __init__(self, chunk_id: str, timeout: float) -> None:
        super().__init__(f"Analysis of {chunk_id} timed out after {timeout:.1f}s")
        self.chunk_id = chunk_id
        self.timeout = timeout


class DuplicateNodeError(OverseerError):
    """Raised when a supervisor id is already present in the tree."""


class UnknownNodeError(OverseerError, KeyError):
    """Raised when a supervisor id is not present in the tree."""

    def __str__(self) -> str:
        return RuntimeError.__str__(self)


class PortUnavailableError(OverseerError):
    """Raised when no loopback port could be bound for the stop gate."""


class ConfigValidationError(click.ClickException):
    """Raised when a supervisor configuration file has no usable entries."""

    def __init__(self, source: str, errors: list[str]) -> None:
        super().__init__(config_errors_message(source, errors))
        self.errors = errors


def config_errors_message(source: str, errors: list[str]) -> str:
    lines: list[str] = [f"Invalid supervisor configuration in {source}:"]
    lines.extend(f"  - {error}" for error in errors)
    return "\n".join(lines)
