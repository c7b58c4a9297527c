"""Apply CLI command."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackgraph.cli.main import Context, pass_context

console = Console()

STATE_STYLES = {
    "provisioned": "green",
    "skipped": "dim",
    "failed": "red",
    "blocked": "yellow",
    "cancelled": "magenta",
}


@click.command()
@click.option(
    "--fail",
    "fail_nodes",
    multiple=True,
    metavar="NODE",
    help="Make the simulated provider fail this node (repeatable)",
)
@click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="State file to read the previous generation from and write this one to",
)
@click.option(
    "--publish-to",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write published attributes to this YAML file",
)
@click.option("--workers", type=int, help="Maximum concurrent provisioning calls")
@click.option("--timeout", type=float, help="Abort the generation after this many seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@pass_context
def apply(
    ctx: Context,
    fail_nodes: tuple[str, ...],
    state_path: Path | None,
    publish_to: Path | None,
    workers: int | None,
    timeout: float | None,
    as_json: bool,
) -> None:
    """
    Provision the topology with the simulated provider.

    Nodes are provisioned in dependency order; independent nodes run
    concurrently. A failing node blocks only the nodes that depend on it.

    Examples:

        # Provision everything
        stackgraph apply

        # See what a database failure does to the rest of the stack
        stackgraph apply --fail database

        # Incremental run: unchanged nodes are skipped
        stackgraph apply --state .stackgraph/state.yml
    """
    from stackgraph.core.errors import StackGraphError
    from stackgraph.core.provisioner import GenerationState, Provisioner
    from stackgraph.core.publisher import AttributePublisher
    from stackgraph.providers import ProviderTable, SimulatedProvider

    try:
        graph = ctx.graph
        settings = ctx.settings(max_workers=workers, timeout_seconds=timeout)
        previous = None
        if state_path is not None and state_path.exists():
            previous = GenerationState.load(state_path)
        unknown = [node_id for node_id in fail_nodes if node_id not in graph]
        if unknown:
            raise click.ClickException(f"Unknown node(s) for --fail: {', '.join(unknown)}")
    except (StackGraphError, click.ClickException) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    generation = previous.generation + 1 if previous else 1
    publisher = AttributePublisher(settings.namespace, generation=generation)
    provider = SimulatedProvider(fail=fail_nodes)
    provisioner = Provisioner(
        graph, ProviderTable.uniform(provider), publisher=publisher, settings=settings
    )

    try:
        report = provisioner.provision(previous)
    except StackGraphError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if state_path is not None:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        report.to_state(graph).save(state_path)
    if publish_to is not None:
        publish_to.parent.mkdir(parents=True, exist_ok=True)
        publisher.dump(publish_to)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        table = Table(title=f"Generation {report.generation}: {graph.name}")
        table.add_column("Node", style="cyan")
        table.add_column("Kind")
        table.add_column("Action")
        table.add_column("State")

        for entry in report.plan:
            state = report.states[entry.node_id].value
            style = STATE_STYLES.get(state, "white")
            table.add_row(
                entry.node_id,
                entry.kind.value,
                entry.action.value,
                f"[{style}]{state}[/{style}]",
            )

        console.print(table)

        for error in report.errors:
            console.print(f"[red]✗[/red] {escape(str(error))}")
        for warning in report.warnings:
            console.print(f"[yellow]![/yellow] {escape(str(warning))}")

        console.print("\n[bold]Summary[/bold]")
        console.print(f"  Succeeded: {len(report.succeeded)}")
        console.print(f"  Failed: {len(report.failed)}")
        console.print(f"  Blocked: {len(report.blocked)}")
        console.print(f"  Cancelled: {len(report.cancelled)}")
        console.print(f"  Published attributes: {len(report.published)}")
        if report.aborted:
            console.print(f"  [magenta]Aborted:[/magenta] {escape(str(report.abort_reason))}")

    if not report.ok:
        raise SystemExit(1)
