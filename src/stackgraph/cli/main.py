"""Main CLI entry point for stackgraph."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.markup import escape

from stackgraph import __version__

console = Console()

# Default path (can be overridden)
DEFAULT_TOPOLOGY = "examples/hotel-booking.yml"


def configure_logging(verbose: bool) -> None:
    """Send library logs to stderr through rich."""
    from rich.logging import RichHandler

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
    )
    root_logger = logging.getLogger("stackgraph")
    root_logger.handlers = [handler]
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.propagate = False


class Context:
    """CLI context object passed to commands."""

    def __init__(self) -> None:
        self.topology_path: Path | None = None
        self.verbose: bool = False
        self._builder: Any = None
        self._file_settings: dict[str, Any] = {}
        self._graph: Any = None

    def _load(self) -> None:
        from stackgraph.core.errors import StackGraphError
        from stackgraph.loader import load_topology

        if not self.topology_path or not self.topology_path.exists():
            raise click.ClickException(f"Topology not found: {self.topology_path}")
        try:
            self._builder, self._file_settings = load_topology(self.topology_path)
        except StackGraphError as e:
            raise click.ClickException(str(e))

    @property
    def builder(self) -> Any:
        """Lazy-load the declarations (unsealed)."""
        if self._builder is None:
            self._load()
        return self._builder

    @property
    def graph(self) -> Any:
        """Lazy-finalize the graph; structural errors propagate as StackGraphError."""
        if self._graph is None:
            self._graph = self.builder.finalize()
        return self._graph

    def settings(self, **overrides: Any) -> Any:
        from stackgraph.config import Settings

        self.builder  # ensure the file settings are loaded
        try:
            return Settings.resolve(self._file_settings, **overrides)
        except ValueError as e:
            raise click.ClickException(f"Invalid settings: {e}")


pass_context = click.make_pass_decorator(Context, ensure=True)


@click.group()
@click.version_option(version=__version__, prog_name="stackgraph")
@click.option(
    "-t",
    "--topology",
    type=click.Path(exists=False, path_type=Path),
    default=DEFAULT_TOPOLOGY,
    help="Path to topology YAML file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@pass_context
def cli(ctx: Context, topology: Path, verbose: bool) -> None:
    """
    Stackgraph - Declarative infrastructure topology.

    Declare nodes and references, validate segmentation, plan and
    provision in dependency order.
    """
    ctx.topology_path = topology
    ctx.verbose = verbose
    configure_logging(verbose)


# Import and register subcommands
from stackgraph.cli.apply import apply
from stackgraph.cli.diagram import diagram
from stackgraph.cli.plan import plan
from stackgraph.cli.validate import validate

cli.add_command(apply)
cli.add_command(diagram)
cli.add_command(plan)
cli.add_command(validate)


@cli.command()
@pass_context
def info(ctx: Context) -> None:
    """Show topology summary."""
    from rich.table import Table

    from stackgraph.core.schema import NodeKind

    try:
        builder = ctx.builder
    except click.ClickException as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    schema_nodes = list(builder.nodes)

    console.print(f"\n[bold]Stackgraph v{__version__}[/bold]\n")

    console.print("[bold cyan]Topology Summary[/bold cyan]")
    console.print(f"  Path: {ctx.topology_path}")
    console.print(f"  Total nodes: {len(schema_nodes)}")
    console.print(f"  Segments: {', '.join(builder.segments) or '-'}")
    console.print(f"  Access rules: {len(builder.rules)}")

    if schema_nodes:
        table = Table(title="Nodes by Kind")
        table.add_column("Kind", style="cyan")
        table.add_column("Count", justify="right")

        for kind in NodeKind:
            count = sum(1 for n in schema_nodes if n.kind == kind)
            if count > 0:
                table.add_row(kind.value, str(count))

        console.print(table)

    if builder.segments:
        table = Table(title="Segments")
        table.add_column("Name", style="cyan")
        table.add_column("Range")
        table.add_column("Isolation")
        table.add_column("Nodes", justify="right")

        for segment in builder.segments.values():
            members = sum(1 for n in schema_nodes if n.segment == segment.name)
            table.add_row(segment.name, segment.cidr, segment.isolation.value, str(members))

        console.print(table)


if __name__ == "__main__":
    cli()
