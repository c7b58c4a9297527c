"""Validation CLI command."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from stackgraph.cli.main import Context, pass_context

console = Console()


@click.command()
@click.option(
    "--strict",
    is_flag=True,
    help="Fail on warnings",
)
@pass_context
def validate(ctx: Context, strict: bool) -> None:
    """
    Validate the topology declarations.

    Checks references, network segmentation, access grants and cycles
    by finalizing the graph. Nothing is provisioned.

    Examples:

        # Basic validation
        stackgraph validate

        # Treat broad access rules as errors
        stackgraph validate --strict
    """
    from stackgraph.core.errors import CyclicDependencyError, StackGraphError
    from stackgraph.core.segmentation import SegmentationModel

    errors: list[str] = []
    warnings: list[str] = []

    console.print("[bold]Loading topology...[/bold]")
    try:
        builder = ctx.builder
        console.print(
            f"  [green]✓[/green] Topology loaded: {len(builder)} nodes, "
            f"{len(builder.segments)} segments, {len(builder.rules)} access rules"
        )
    except click.ClickException as e:
        console.print(f"  [red]✗[/red] {escape(e.message)}")
        raise SystemExit(1)

    console.print("[bold]Finalizing graph...[/bold]")
    graph = None
    try:
        graph = ctx.graph
        console.print("  [green]✓[/green] References resolvable")
        console.print("  [green]✓[/green] Segmentation and access grants valid")
        console.print(f"  [green]✓[/green] No cycles ({len(graph.order)} nodes ordered)")
    except CyclicDependencyError as e:
        errors.append(str(e))
        console.print(f"  [red]✗[/red] Dependency cycle: {' -> '.join(e.chain)}")
    except StackGraphError as e:
        errors.append(str(e))
        console.print(f"  [red]✗[/red] {type(e).__name__}: {escape(str(e))}")

    if graph is not None:
        console.print("[bold]Checking access rules...[/bold]")
        model = SegmentationModel(graph.segments.values(), graph.rules)
        broad = model.broad_grants()
        for rule in broad:
            warnings.append(
                f"Broad grant {rule.source} -> {rule.destination} "
                f"({rule.protocol}/{rule.port or 'all'})"
            )
            console.print(
                f"  [yellow]![/yellow] Broad grant: {rule.source} -> {rule.destination}"
            )
        if not broad:
            console.print("  [green]✓[/green] All access rules are narrow")

    # Summary
    console.print("\n[bold]Validation Summary[/bold]")
    console.print(f"  Errors: {len(errors)}")
    console.print(f"  Warnings: {len(warnings)}")

    if errors:
        console.print("\n[red bold]Validation failed[/red bold]")
        for err in errors:
            console.print(f"  [red]•[/red] {escape(err)}")
        raise SystemExit(1)

    if warnings and strict:
        console.print("\n[yellow bold]Validation failed (strict mode)[/yellow bold]")
        for warn in warnings:
            console.print(f"  [yellow]•[/yellow] {escape(warn)}")
        raise SystemExit(1)

    if warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warn in warnings:
            console.print(f"  [yellow]•[/yellow] {escape(warn)}")

    console.print("\n[green bold]Validation passed[/green bold]")
