"""Graphviz DOT diagram generation."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stackgraph.core.graph import Graph, Node

FILL_COLORS = {
    "public": "lightyellow",
    "egress": "lightblue",
    "isolated": "lightpink",
}


def generate_dot(graph: Graph, show_rules: bool = True) -> str:
    """
    Generate Graphviz DOT diagram.

    Can be rendered with: dot -Tpng topology.dot -o topology.png
    """
    lines = [
        f'digraph "{graph.name}" {{',
        "    rankdir=LR;",
        "    node [shape=box, style=filled, fillcolor=white];",
        "    edge [fontsize=10];",
        "",
    ]

    # Group nodes by segment
    groups: dict[str, list[Node]] = defaultdict(list)
    for node in graph:
        groups[node.segment or ""].append(node)

    for segment, members in sorted(groups.items()):
        if not segment:
            continue
        isolation = graph.segments[segment].isolation.value if segment in graph.segments else ""
        fillcolor = FILL_COLORS.get(isolation, "white")
        lines.append(f'    subgraph "cluster_{segment}" {{')
        lines.append(f'        label="{segment} ({isolation})";')
        lines.append("        style=dashed;")
        lines.append("        color=gray;")
        lines.append("")
        for node in members:
            lines.append(
                f'        "{node.id}" [label="{node.id}\\n{node.kind.value}", fillcolor={fillcolor}];'
            )
        lines.append("    }")
        lines.append("")

    for node in groups.get("", []):
        lines.append(f'    "{node.id}" [label="{node.id}\\n{node.kind.value}"];')

    # Add dependencies
    lines.append("")
    lines.append("    // Dependencies")
    for node in graph:
        outputs: dict[str, list[str]] = defaultdict(list)
        for ref in graph.references_from(node.id):
            if ref.output not in outputs[ref.to_node]:
                outputs[ref.to_node].append(ref.output)
        for dep in graph.dependencies(node.id):
            label = ", ".join(outputs.get(dep, []))
            lines.append(f'    "{node.id}" -> "{dep}" [label="{label}"];')

    if show_rules and graph.rules:
        lines.append("")
        lines.append("    // Access rules")
        for rule in graph.rules:
            lines.append(
                f'    "{rule.source}" -> "{rule.destination}" '
                f'[label="{rule.protocol}/{rule.port}", style=dotted, color=red];'
            )

    lines.append("}")

    return "\n".join(lines)
