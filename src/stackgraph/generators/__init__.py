"""Generators for topology diagrams."""

from stackgraph.generators.dot import generate_dot
from stackgraph.generators.mermaid import generate_mermaid

__all__ = [
    "generate_dot",
    "generate_mermaid",
]
