"""Routing rule CLI commands.

This module provides CLI commands for listing an organization's rules in
evaluation order and for rewriting that order.
"""

from __future__ import annotations

import json
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from reviewrouter.database.models.rule import RoutingRule
from reviewrouter.errors import NotFoundError, RuleValidationError, StoreUnavailable
from reviewrouter.services import Services

app = typer.Typer(help="Routing rule commands")
console = Console()


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {label} UUID:[/red] {value}")
        raise typer.Exit(code=1)


def rules_table(rules: list[RoutingRule], title: str = "Routing Rules") -> Table:
    table = Table(title=title)
    table.add_column("Priority", justify="right", style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Repository")
    table.add_column("Strategy", style="magenta")
    table.add_column("Conditions", justify="right")
    table.add_column("Active")
    for rule in rules:
        table.add_row(
            str(rule.priority),
            str(rule.id),
            rule.name,
            rule.repository_full_name or "*",
            str(rule.directive.get("strategy", "?")),
            str(len(rule.conditions or [])),
            "[green]yes[/green]" if rule.is_active else "[dim]no[/dim]",
        )
    return table


@app.command("list")
def list_rules(
    organization_id: Annotated[str, typer.Argument(help="Organization UUID")],
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List an organization's rules in evaluation order."""
    from reviewrouter.main import get_app_context

    ctx = get_app_context()
    org_uuid = _parse_uuid(organization_id, "organization")

    async def _list(services: Services) -> list[RoutingRule]:
        return await services.rules.list_rules(org_uuid)

    try:
        rules = ctx.run(_list)
    except (NotFoundError, StoreUnavailable) as e:
        console.print(f"[red]Error listing rules:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        payload = [
            {
                "id": str(rule.id),
                "name": rule.name,
                "priority": rule.priority,
                "repository_full_name": rule.repository_full_name,
                "conditions": rule.conditions,
                "directive": rule.directive,
                "is_active": rule.is_active,
            }
            for rule in rules
        ]
        console.print_json(json.dumps(payload))
        return

    if not rules:
        console.print("[yellow]No rules configured[/yellow]")
        return
    console.print(rules_table(rules))


@app.command()
def reorder(
    organization_id: Annotated[str, typer.Argument(help="Organization UUID")],
    rule_ids: Annotated[
        list[str],
        typer.Argument(help="Every rule UUID of the organization, highest priority first"),
    ],
) -> None:
    """Rewrite rule priorities to the given order (first id gets priority 0)."""
    from reviewrouter.main import get_app_context

    ctx = get_app_context()
    org_uuid = _parse_uuid(organization_id, "organization")
    ordered = [_parse_uuid(rule_id, "rule") for rule_id in rule_ids]

    async def _reorder(services: Services) -> list[RoutingRule]:
        return await services.rules.reorder_rules(org_uuid, ordered)

    try:
        rules = ctx.run(_reorder)
    except (NotFoundError, RuleValidationError, StoreUnavailable) as e:
        console.print(f"[red]Reorder rejected:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(rules_table(rules, title="Routing Rules (reordered)"))
