import socket
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from overseer import cli
from overseer.cli import main

VALID_YAML = """\
project: shop
supervisors:
  - name: Technical
    type: coordinator
    keywords: [code]
  - name: Security
    type: specialist
    parent: Technical
    rules:
      - id: secrets
        description: No hardcoded secrets
        check: Check whether credentials are written in source code
"""


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_validate_lists_supervisors(tmp_path: Path) -> None:
    path = tmp_path / "shop.yaml"
    path.write_text(VALID_YAML, encoding="utf-8")

    result = CliRunner().invoke(main, ["validate", str(path)])

    assert result.exit_code == 0
    assert "shop-security" in result.output
    assert "2 supervisor(s) valid" in result.output


def test_validate_fails_on_invalid_entries(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("supervisors:\n  - name: Nameless\n", encoding="utf-8")

    result = CliRunner().invoke(main, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Nameless: type is required" in result.output


def test_tree_export_prints_yaml() -> None:
    result = CliRunner().invoke(main, ["tree", "--export", "defaults"])

    assert result.exit_code == 0
    assert "project: defaults" in result.output
    assert "id: spec-security" in result.output


def test_hook_fails_open_without_gate() -> None:
    result = CliRunner().invoke(
        main, ["hook", "--port", str(_free_port()), "--timeout", "1"], input="{}"
    )

    assert result.exit_code == 0
    assert "Supervisor not available" in result.output


def test_hook_blocks_with_exit_code_2(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    async def fake_ask_gate(url: str, context: dict[str, Any], timeout: float) -> dict[str, Any]:
        seen.update(url=url, context=context)
        return {"allow": False, "message": "SUPERVISOR: stop blocked."}

    monkeypatch.setattr(cli, "ask_gate", fake_ask_gate)

    result = CliRunner().invoke(
        main, ["hook", "--port", "18899"], input='{"session_id": "abc"}'
    )

    assert result.exit_code == 2
    assert "SUPERVISOR: stop blocked." in result.output
    assert seen["url"].endswith(":18899/api/check-stop")
    assert seen["context"] == {"session_id": "abc"}


def test_hook_ignores_malformed_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    contexts: list[dict[str, Any]] = []

    async def fake_ask_gate(url: str, context: dict[str, Any], timeout: float) -> dict[str, Any]:
        contexts.append(context)
        return {"allow": True, "message": "Task complete. You may stop."}

    monkeypatch.setattr(cli, "ask_gate", fake_ask_gate)

    result = CliRunner().invoke(main, ["hook"], input="not json")

    assert result.exit_code == 0
    assert contexts == [{}]
    assert "Task complete" in result.output
