"""Mermaid diagram generation."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from stackgraph.core.schema import INTERNET

if TYPE_CHECKING:
    from stackgraph.core.graph import Graph, Node

# Node shape per kind: (open, close)
SHAPES = {
    "network": ("[[", "]]"),
    "subnet": ("[", "]"),
    "security_group": ("{{", "}}"),
    "database": ("[(", ")]"),
    "cache": ("[(", ")]"),
    "compute_service": ("([", "])"),
    "parameter": (">", "]"),
    "log_sink": ("[/", "/]"),
}


def _node_id(node_id: str) -> str:
    return node_id.replace("-", "_")


def _scope_id(graph: Graph, scope: str) -> str:
    """Mermaid id of an access rule scope: a security group, a segment or the internet."""
    if scope in graph.segments:
        return f"seg_{_node_id(scope)}"
    return _node_id(scope)


def generate_mermaid(graph: Graph, show_rules: bool = True) -> str:
    """
    Generate Mermaid flowchart diagram.

    Nodes are grouped by segment; arrows point from a node to the nodes it
    depends on, labelled with the referenced outputs. Access rules between
    scopes are drawn dotted.

    Returns Markdown with embedded Mermaid diagram.
    """
    lines = [f"# {graph.name}", "", "```mermaid", "flowchart LR"]

    # Group nodes by segment
    groups: dict[str, list[Node]] = defaultdict(list)
    for node in graph:
        groups[node.segment or ""].append(node)

    def node_line(node: Node, indent: str) -> str:
        opening, closing = SHAPES[node.kind.value]
        return f'{indent}{_node_id(node.id)}{opening}"{node.id}"{closing}'

    for segment, members in sorted(groups.items()):
        if not segment:
            continue
        isolation = graph.segments[segment].isolation.value if segment in graph.segments else "?"
        lines.append(f'    subgraph seg_{_node_id(segment)}["{segment} ({isolation})"]')
        for node in members:
            lines.append(node_line(node, "        "))
        lines.append("    end")

    for node in groups.get("", []):
        lines.append(node_line(node, "    "))

    # Add dependencies
    lines.append("")
    lines.append("    %% Dependencies")
    for node in graph:
        labels: dict[str, list[str]] = defaultdict(list)
        for ref in graph.references_from(node.id):
            if ref.output not in labels[ref.to_node]:
                labels[ref.to_node].append(ref.output)
        for dep in graph.dependencies(node.id):
            label = ", ".join(labels.get(dep, [])) or "depends_on"
            lines.append(f"    {_node_id(node.id)} -->|{label}| {_node_id(dep)}")

    if show_rules and graph.rules:
        lines.append("")
        lines.append("    %% Access rules")
        if any(INTERNET in (rule.source, rule.destination) for rule in graph.rules):
            lines.append(f'    {INTERNET}(("{INTERNET}"))')
        for rule in graph.rules:
            source = _scope_id(graph, rule.source)
            destination = _scope_id(graph, rule.destination)
            lines.append(f"    {source} -.->|{rule.protocol}/{rule.port}| {destination}")

    lines.append("```")
    lines.append("")
    lines.append("## Legend")
    lines.append("")
    lines.append("- `-->` Depends on (labelled with referenced outputs)")
    lines.append("- `-.->` Access rule (protocol/port, 0 = all ports)")

    return "\n".join(lines)
