"""
Stackgraph - Declarative infrastructure topology with dependency-ordered provisioning.

This package provides tools for:
- Declaring infrastructure nodes and references between their outputs
- Validating network segmentation and default-deny access rules
- Planning and provisioning nodes concurrently in dependency order
- Publishing node outputs as write-once hierarchical attributes
- Generating topology diagrams (Mermaid, Graphviz)
"""

__version__ = "0.1.0"

from stackgraph.core.graph import Graph, GraphBuilder, Node
from stackgraph.core.publisher import AttributePublisher
from stackgraph.core.resolver import ReferenceResolver
from stackgraph.core.provisioner import GenerationReport, GenerationState, Provisioner

__all__ = [
    "__version__",
    "Graph",
    "GraphBuilder",
    "Node",
    "AttributePublisher",
    "ReferenceResolver",
    "GenerationReport",
    "GenerationState",
    "Provisioner",
]
