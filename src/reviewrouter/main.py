"""Main CLI entry point for ReviewRouter.

This module provides the main Typer application with sub-commands for
serving the HTTP API, routing events from files, running escalation
sweeps, and inspecting or reordering routing rules.

Usage:
    reviewrouter serve --port 8000
    reviewrouter route event.json
    reviewrouter escalations run
    reviewrouter escalations watch --interval 600
    reviewrouter rules list <organization-id>
    reviewrouter rules reorder <organization-id> <rule-id> <rule-id> ...
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Optional, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from reviewrouter.cli import escalations as escalations_cli
from reviewrouter.cli import rules as rules_cli
from reviewrouter.config import ReviewRouterConfig, load_config
from reviewrouter.database.connection import get_engine, get_session_factory
from reviewrouter.errors import NotFoundError, StoreUnavailable
from reviewrouter.logging import setup_logging
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.models import RoutingOutcome, RoutingResult
from reviewrouter.services import Services, build_services

T = TypeVar("T")

app = typer.Typer(
    name="reviewrouter",
    help="ReviewRouter: rule-based pull request reviewer routing",
    no_args_is_help=True,
)

app.add_typer(escalations_cli.app, name="escalations", help="Run escalation sweeps")
app.add_typer(rules_cli.app, name="rules", help="Inspect and reorder routing rules")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded ReviewRouter configuration
    """

    def __init__(self, config: ReviewRouterConfig):
        self.config = config

    def run(self, work: Callable[[Services], Awaitable[T]]) -> T:
        """Run ``work`` with freshly built services on a new event loop.

        The engine is created and disposed inside the loop so that pooled
        connections never outlive it.
        """

        async def _main() -> T:
            engine = get_engine(self.config.database)
            services = build_services(self.config, get_session_factory(engine))
            try:
                return await work(services)
            finally:
                await services.close()
                await engine.dispose()

        return asyncio.run(_main())


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: ReviewRouterConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default: web.host)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default: web.port)"),
    ] = None,
) -> None:
    """Start the ReviewRouter HTTP API with uvicorn."""
    import uvicorn

    from reviewrouter.web.app import create_app

    config = get_app_context().config
    host = host or config.web.host
    port = port or config.web.port

    console.print("[bold cyan]Starting ReviewRouter API[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {host}")
    console.print(f"[dim]Port:[/dim] {port}")
    console.print()

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


def _print_result(result: RoutingResult) -> None:
    colour = {
        RoutingOutcome.assigned: "green",
        RoutingOutcome.duplicate: "yellow",
        RoutingOutcome.unassigned: "yellow",
        RoutingOutcome.no_eligible_reviewer: "red",
    }[result.outcome]
    console.print(f"[bold]Outcome:[/bold] [{colour}]{result.outcome.value}[/{colour}]")

    decision = result.decision
    if decision is not None and decision.rule is not None:
        rule = decision.rule
        console.print(f"[bold]Rule:[/bold] {rule.name} (priority {rule.priority})")
    elif decision is not None and decision.fallback is not None:
        console.print(f"[bold]Fallback:[/bold] {decision.fallback.value}")
    if result.routing_round is not None:
        console.print(f"[bold]Round:[/bold] {result.routing_round}")
    if result.reason:
        console.print(f"[bold]Reason:[/bold] {result.reason}")

    if result.reviewers:
        table = Table(title="Assigned reviewers")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("GitHub", style="green")
        for reviewer in result.reviewers:
            table.add_row(str(reviewer.id), reviewer.name, reviewer.github_username)
        console.print(table)


@app.command()
def route(
    event_file: Annotated[
        Path,
        typer.Argument(
            help="JSON file holding one pull request event",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
) -> None:
    """Route a pull request event read from a JSON file."""
    ctx = get_app_context()

    try:
        event = PullRequestEvent.model_validate_json(event_file.read_text(encoding="utf-8"))
    except ValidationError as e:
        console.print(f"[red]Invalid event:[/red] {e}")
        raise typer.Exit(code=1)

    async def _route(services: Services) -> RoutingResult:
        return await services.routing.route_event(event)

    try:
        result = ctx.run(_route)
    except (NotFoundError, StoreUnavailable) as e:
        console.print(f"[red]Routing failed:[/red] {e}")
        raise typer.Exit(code=1)

    _print_result(result)
    if result.outcome is RoutingOutcome.no_eligible_reviewer:
        raise typer.Exit(code=2)


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context."""
    try:
        config = load_config(config_path)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
