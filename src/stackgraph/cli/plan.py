"""Plan CLI command."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackgraph.cli.main import Context, pass_context

console = Console()

ACTION_STYLES = {
    "create": "green",
    "update": "yellow",
    "skip": "dim",
}


@click.command()
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.option(
    "--state",
    "state_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="State file of the previous generation",
)
@pass_context
def plan(ctx: Context, output_format: str, state_path: Path | None) -> None:
    """
    Show the provisioning plan.

    Lists every node in the order it would be provisioned and whether it
    would be created, updated or skipped relative to the previous generation.

    Examples:

        # Plan a first generation
        stackgraph plan

        # Plan against the state left by the last apply
        stackgraph plan --state .stackgraph/state.yml --format json
    """
    from stackgraph.core.errors import StackGraphError
    from stackgraph.core.provisioner import GenerationState, Provisioner
    from stackgraph.providers import ProviderTable

    try:
        graph = ctx.graph
        previous = GenerationState.load(state_path) if state_path else None
        entries = Provisioner(graph, ProviderTable(), settings=ctx.settings()).plan(previous)
    except (StackGraphError, click.ClickException) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if output_format == "json":
        click.echo(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return

    table = Table(title=f"Plan: {graph.name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Node", style="cyan")
    table.add_column("Kind")
    table.add_column("Action")
    table.add_column("Depends on")

    for i, entry in enumerate(entries, 1):
        style = ACTION_STYLES[entry.action.value]
        table.add_row(
            str(i),
            entry.node_id,
            entry.kind.value,
            f"[{style}]{entry.action.value}[/{style}]",
            ", ".join(entry.dependencies) or "-",
        )

    console.print(table)

    counts = {action: 0 for action in ACTION_STYLES}
    for entry in entries:
        counts[entry.action.value] += 1
    console.print(
        f"\n[bold]Plan:[/bold] {counts['create']} to create, "
        f"{counts['update']} to update, {counts['skip']} unchanged"
    )
