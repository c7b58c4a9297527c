"""Core domain models for infrastructure topology."""

from stackgraph.core.errors import (
    AccessNotGrantedError,
    AttributeConflictError,
    BlockedDependentWarning,
    CyclicDependencyError,
    DuplicateIdError,
    GraphSealedError,
    ProvisioningError,
    StackGraphError,
)
from stackgraph.core.graph import AccessRule, Capability, Graph, GraphBuilder, Node, Segment
from stackgraph.core.publisher import AttributePublisher
from stackgraph.core.refs import PENDING, OutputRef, Pending, Reference, Resolved, Template
from stackgraph.core.resolver import OutputStore, ReferenceResolver
from stackgraph.core.schema import Isolation, NodeKind, NodeState, PlanAction
from stackgraph.core.segmentation import SegmentationModel

__all__ = [
    "AccessNotGrantedError",
    "AttributeConflictError",
    "BlockedDependentWarning",
    "CyclicDependencyError",
    "DuplicateIdError",
    "GraphSealedError",
    "ProvisioningError",
    "StackGraphError",
    "AccessRule",
    "Capability",
    "Graph",
    "GraphBuilder",
    "Node",
    "Segment",
    "AttributePublisher",
    "PENDING",
    "OutputRef",
    "Pending",
    "Reference",
    "Resolved",
    "Template",
    "OutputStore",
    "ReferenceResolver",
    "Isolation",
    "NodeKind",
    "NodeState",
    "PlanAction",
    "SegmentationModel",
]
