"""Main entry point for the ecountgate operational CLI.

Sets up the Typer CLI application and the composition root. The commands
expose the coordinator's introspection calls so an operator can see rate
windows, the error budget, cache occupancy and the current session without
going through the outer tool layer.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

# --- Domain Layer ---
from ecountgate.domain.errors import GateError, format_error_message

# --- Core Layer ---
from ecountgate.core.context import CoordinatorContext, create_context

# --- Infrastructure Layer ---
from ecountgate.infrastructure.config.settings import get_config, load_gate_settings
from ecountgate.infrastructure.monitoring.logger_setup import setup_logging

logger = logging.getLogger(__name__)

console = Console()
error_console = Console(stderr=True)

app = typer.Typer(
    name="ecountgate",
    help="ecountgate: rate-limit, session and error-budget coordination for the ECOUNT OpenAPI.",
    add_completion=False,
)


# --- Dependency Injection (Composition Root) ---

def create_dependencies() -> CoordinatorContext:
    """Loads settings, configures logging and builds the coordinator context."""
    settings = load_gate_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    setup_logging(log_level=log_level, log_file=get_config("ECOUNT_LOG_FILE"))
    logger.debug("Configuration and logging initialized.")
    return create_context(settings)


def run_with_context(command: Callable[[CoordinatorContext], Awaitable[Any]]) -> Any:
    """Builds the context, runs an async command with it, and closes it.

    Configuration and upstream errors are printed and turned into exit code 1.
    """
    try:
        context = create_dependencies()
    except GateError as e:
        error_console.print(f"[bold red]Configuration error:[/bold red] {format_error_message(e)}")
        raise typer.Exit(code=1)

    async def _run() -> Any:
        context.start()
        try:
            return await command(context)
        finally:
            await context.aclose()

    try:
        return asyncio.run(_run())
    except GateError as e:
        logger.debug(f"Command failed: {e.to_dict()}")
        error_console.print(f"[bold red]Error ({e.code}):[/bold red] {format_error_message(e)}")
        raise typer.Exit(code=1)


def _format_ms(value: Optional[int]) -> str:
    return "-" if not value else f"{-(-value // 1000)}s"


# --- CLI Commands ---

JsonOption = Annotated[bool, typer.Option("--json", help="Print machine-readable JSON instead of tables.")]


@app.command()
def status(as_json: JsonOption = False):
    """Show rate windows, the error budget and cache occupancy."""

    async def _status(context: CoordinatorContext) -> Dict[str, Any]:
        await context.rate_limiter.load_state()
        coordinator = context.coordinator
        return {
            "rate_limits": coordinator.rate_limit_status(),
            "circuit_breaker": coordinator.circuit_breaker_status(),
            "cache": coordinator.cache_status(),
        }

    report = run_with_context(_status)
    if as_json:
        console.print_json(json.dumps(report))
        return

    table = Table(title="Rate limits")
    table.add_column("Rate class")
    table.add_column("Description")
    table.add_column("Callable")
    table.add_column("Wait")
    table.add_column("Auto-wait")
    for name, entry in report["rate_limits"].items():
        table.add_row(
            name,
            entry["description"],
            "yes" if entry["can_call"] else "[red]no[/red]",
            _format_ms(entry["wait_time_ms"]),
            "yes" if entry["auto_wait"] else "no",
        )
    console.print(table)

    breaker = report["circuit_breaker"]
    console.print(
        f"Error budget: {breaker['error_count']}/{breaker['warning_threshold']} "
        f"(upstream ceiling {breaker['max_errors']}), "
        f"{'open' if breaker['can_proceed'] else '[red]tripped[/red]'}"
    )
    cache = report["cache"]
    console.print(f"Cache: {cache['size']}/{cache['max_size']} entries")


@app.command()
def session(as_json: JsonOption = False):
    """Show the persisted session (session id redacted). Never logs in."""

    async def _session(context: CoordinatorContext) -> Dict[str, Any]:
        await context.session_manager.restore()
        return context.coordinator.session_info()

    info = run_with_context(_session)
    if as_json:
        console.print_json(json.dumps(info))
        return
    table = Table(title="Session")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in info.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@app.command(name="test-connection")
def test_connection_command():
    """Resolve the zone and make sure a session can be obtained."""
    result = run_with_context(lambda context: context.coordinator.test_connection())
    if result["success"]:
        console.print(f"[green]{result['message']}[/green] (zone={result.get('zone')}, session={result.get('session_id')})")
        return
    error_console.print(f"[bold red]{result['message']}[/bold red]")
    raise typer.Exit(code=1)


@app.command()
def reset(
    rate_class: Annotated[
        Optional[str],
        typer.Option("--rate-class", "-r", help="Reset only this rate class. Resets all when omitted."),
    ] = None,
):
    """Clear recorded rate windows (in memory and in the state file) and the cache."""

    async def _reset(context: CoordinatorContext) -> int:
        await context.rate_limiter.reset(rate_class)
        return context.coordinator.invalidate_cache()

    removed = run_with_context(_reset)
    console.print(f"Rate limit state reset ({rate_class or 'all classes'}); {removed} cached entries dropped.")


def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
