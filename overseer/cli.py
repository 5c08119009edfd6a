"""Main CLI entry point for overseer."""

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .config import settings
from .config_loader import LoadResult, apply_to_tree, dump_yaml, load_path
from .defaults import default_configs
from .errors import ConfigValidationError
from .history import AlertHistory, create_store
from .judge import AnthropicJudge
from .runtime import SupervisorRuntime
from .server import StopGateServer
from .tree import SupervisorTree

console = Console()
err_console = Console(stderr=True)

HOOK_ALLOW = 0
HOOK_BLOCK = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
    )


def _load_configs(config_path: Path | None) -> LoadResult:
    path = config_path or settings.supervisors_file
    if path is None:
        return LoadResult(configs=default_configs())
    result = load_path(path)
    if not result.configs and result.errors:
        raise ConfigValidationError(str(path), result.errors)
    for error in result.errors:
        err_console.print(f"[yellow]Skipped: {error}[/yellow]")
    return result


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Overseer: real-time supervision of a coding agent.

    Classifies reasoning against rule hierarchies, tracks task completion and
    decides whether the agent may stop.
    """
    _configure_logging(verbose)


@main.command()
@click.option(
    "--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None,
    help="Supervisor YAML file or directory",
)
@click.option("--port", type=int, default=None, help="First port to try for the stop gate")
def serve(config_path: Path | None, port: int | None) -> None:
    """Run the stop gate with the configured supervisor tree."""
    loaded = _load_configs(config_path)

    async def run() -> None:
        judge = AnthropicJudge()
        runtime = SupervisorRuntime(judge, loaded.configs, store=create_store())
        restored = await runtime.history.load()
        server = StopGateServer(runtime.gate, port=port)
        try:
            bound = await server.start()
            stats = runtime.tree.stats()
            console.print(
                Panel(
                    f"Stop gate: [cyan]http://{server.host}:{bound}[/cyan]\n"
                    f"Supervisors: {stats.total_nodes} ({stats.total_rules} rules)\n"
                    f"Alert history: {restored} entries ({settings.history_backend})",
                    title="overseer",
                )
            )
            await server.serve_forever()
        finally:
            await server.stop()
            await judge.aclose()

    asyncio.run(run())


@main.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
def validate(path: Path) -> None:
    """Validate a supervisor configuration file or directory.

    PATH: YAML file, or directory of YAML files
    """
    result = load_path(path)

    if result.configs:
        table = Table(title=f"Supervisors in {path}")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("Parent")
        table.add_column("Rules", justify="right")
        for config in result.configs:
            table.add_row(
                config.id,
                config.name,
                config.kind.value,
                config.parent_id or "-",
                str(len(config.rules)),
            )
        console.print(table)

    if result.errors:
        raise ConfigValidationError(str(path), result.errors)
    console.print(f"[green]{len(result.configs)} supervisor(s) valid[/green]")


@main.command()
@click.option(
    "--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None,
    help="Supervisor YAML file or directory",
)
@click.option("--export", "export_project", default=None, help="Print the tree as YAML")
def tree(config_path: Path | None, export_project: str | None) -> None:
    """Show the supervisor hierarchy."""
    loaded = _load_configs(config_path)
    supervisors = SupervisorTree()
    apply_to_tree(supervisors, loaded.configs)

    if export_project:
        click.echo(dump_yaml(supervisors.configs(), export_project))
        return

    console.print(_render_tree(supervisors))


def _render_tree(supervisors: SupervisorTree) -> Tree:
    def label(node_id: str) -> str:
        node = supervisors.get(node_id)
        style = "cyan" if node.enabled else "dim"
        rules = f" ({len(node.rules)} rules)" if node.rules else ""
        return f"[{style}]{node.name}[/{style}] [dim]{node.kind.value}[/dim]{rules}"

    root = Tree(label(supervisors.root.id))
    branches = {supervisors.root.id: root}
    for node in supervisors.walk():
        for child in supervisors.children_of(node.id):
            branches[child.id] = branches[node.id].add(label(child.id))
    return root


@main.command()
@click.option("--limit", default=20, help="Number of alerts to show")
@click.option("--supervisor", default=None, help="Only alerts from this supervisor")
@click.option("--clear", "clear_history", is_flag=True, help="Delete the alert history")
def history(limit: int, supervisor: str | None, clear_history: bool) -> None:
    """List recent alerts."""

    async def show() -> None:
        alerts = AlertHistory(create_store())
        await alerts.load()

        if clear_history:
            await alerts.clear()
            console.print("[green]Alert history cleared[/green]")
            return

        entries = alerts.by_supervisor(supervisor) if supervisor else alerts.entries()
        if not entries:
            console.print("[yellow]No alerts found[/yellow]")
            return

        table = Table(title="Alert History")
        table.add_column("When", style="dim")
        table.add_column("Supervisor", style="cyan")
        table.add_column("Message")
        table.add_column("Status")
        for entry in entries[:limit]:
            when = _format_timestamp(entry.timestamp)
            table.add_row(when, entry.supervisor_name, entry.message, entry.status)
        console.print(table)

    asyncio.run(show())


def _format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


@main.command()
@click.option("--port", type=int, default=None, help="Stop gate port")
@click.option("--timeout", type=float, default=5.0, help="Request timeout in seconds")
def hook(port: int | None, timeout: float) -> None:
    """Stop hook: ask the gate whether the agent may stop.

    Reads the hook context as JSON from stdin. Exits 0 to allow the stop and
    2 to block it. Any failure allows the stop.
    """
    context = _read_hook_context()
    url = f"http://{settings.gate_host}:{port or settings.gate_port}/api/check-stop"
    decision = asyncio.run(ask_gate(url, context, timeout))

    if decision.get("allow", True):
        if decision.get("message"):
            click.echo(decision["message"])
        sys.exit(HOOK_ALLOW)

    click.echo(decision.get("message") or "Stop blocked by supervisor", err=True)
    sys.exit(HOOK_BLOCK)


def _read_hook_context() -> dict[str, Any]:
    if sys.stdin is None or sys.stdin.isatty():
        return {}
    raw = sys.stdin.read()
    try:
        context = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        return {}
    return context if isinstance(context, dict) else {}


async def ask_gate(url: str, context: dict[str, Any], timeout: float) -> dict[str, Any]:
    """POST the context to the gate. Fails open on any error."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(url, json=context)
        decision = resp.json()
    except httpx.TimeoutException:
        return {"allow": True, "message": "Supervisor timeout"}
    except httpx.HTTPError as e:
        err_console.print(f"Supervisor not available: {e}")
        return {"allow": True, "message": "Supervisor not available"}
    except ValueError:
        return {"allow": True, "message": "Invalid response from supervisor"}
    if not isinstance(decision, dict):
        return {"allow": True, "message": "Invalid response from supervisor"}
    return decision


if __name__ == "__main__":
    main()
