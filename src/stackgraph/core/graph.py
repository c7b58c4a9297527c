"""Node declarations, the graph builder and the sealed dependency graph."""

from __future__ import annotations

import hashlib
import json
import logging
from collections import deque
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from stackgraph.core.errors import (
    DanglingReferenceError,
    DuplicateIdError,
    GraphSealedError,
    SegmentationError,
    StackGraphError,
    UnknownOutputError,
)
from stackgraph.core.ordering import topological_order
from stackgraph.core.refs import OutputRef, Reference, describe, iter_refs
from stackgraph.core.schema import (
    KIND_OUTPUTS,
    AccessRuleSchema,
    CapabilitySchema,
    NodeKind,
    SegmentSchema,
)

logger = logging.getLogger(__name__)

Capability = CapabilitySchema
Segment = SegmentSchema
AccessRule = AccessRuleSchema


class Node:
    """
    A typed, named unit of infrastructure.

    Outputs are not stored here: they are unknown at declaration time and
    are produced per generation by the provisioner (see ``OutputStore``).
    """

    def __init__(
        self,
        node_id: str,
        kind: NodeKind | str,
        properties: Mapping[str, Any] | None = None,
        *,
        segment: str | None = None,
        scope: str | None = None,
        capabilities: Iterable[Capability] = (),
        depends_on: Iterable[str] = (),
        description: str | None = None,
    ) -> None:
        self._id = node_id
        self._kind = NodeKind(kind)
        self._properties: dict[str, Any] = dict(properties or {})
        self._segment = segment
        self._scope = scope
        self._capabilities = tuple(capabilities)
        self._depends_on = tuple(depends_on)
        self._description = description
        self._index = -1

    @property
    def id(self) -> str:
        return self._id

    @property
    def kind(self) -> NodeKind:
        return self._kind

    @property
    def properties(self) -> Mapping[str, Any]:
        """Declared properties; values may be literals, OutputRefs or Templates."""
        return MappingProxyType(self._properties)

    @property
    def segment(self) -> str | None:
        return self._segment

    @property
    def scope(self) -> str | None:
        return self._scope

    @property
    def capabilities(self) -> tuple[Capability, ...]:
        return self._capabilities

    @property
    def depends_on(self) -> tuple[str, ...]:
        """Explicit ordering dependencies not carried by any property."""
        return self._depends_on

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def declaration_index(self) -> int:
        return self._index

    @property
    def output_names(self) -> tuple[str, ...]:
        return KIND_OUTPUTS[self._kind]

    def references(self) -> list[Reference]:
        return [
            Reference(self._id, path, ref.node_id, ref.output)
            for path, ref in iter_refs(self._properties)
        ]

    def fingerprint(self) -> str:
        """Stable hash of the declaration, used to detect changes between generations."""
        payload = {
            "kind": self._kind.value,
            "properties": describe(self._properties),
            "segment": self._segment,
            "scope": self._scope,
        }
        encoded = json.dumps(payload, sort_keys=True, default=str).encode()
        return hashlib.sha256(encoded).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self._id,
            "kind": self._kind.value,
            "properties": describe(self._properties),
            "segment": self._segment,
            "scope": self._scope,
            "capabilities": [c.model_dump() for c in self._capabilities],
            "depends_on": list(self._depends_on),
        }

    def __repr__(self) -> str:
        return f"Node({self._id}, kind={self._kind.value})"


class Graph:
    """
    A sealed dependency graph.

    Produced by ``GraphBuilder.finalize()``; read-only from then on. Edges
    point from a dependent to its dependency and are derived from property
    references plus explicit ``depends_on`` entries.
    """

    def __init__(
        self,
        name: str,
        nodes: dict[str, Node],
        segments: Mapping[str, Segment],
        rules: Iterable[AccessRule],
    ) -> None:
        self._name = name
        self._nodes = dict(nodes)
        self._segments = dict(segments)
        self._rules = tuple(rules)
        self._references: dict[str, tuple[Reference, ...]] = {
            node_id: tuple(node.references()) for node_id, node in self._nodes.items()
        }
        self._dependencies: dict[str, tuple[str, ...]] = {}
        self._dependents: dict[str, list[str]] = {node_id: [] for node_id in self._nodes}
        for node_id, node in self._nodes.items():
            deps: list[str] = []
            for target in [r.to_node for r in self._references[node_id]] + list(node.depends_on):
                if target not in deps:
                    deps.append(target)
            self._dependencies[node_id] = tuple(deps)
            for dep in deps:
                if dep in self._dependents:
                    self._dependents[dep].append(node_id)
        self._kind_index: dict[NodeKind, list[Node]] = {}
        for node in self._nodes.values():
            self._kind_index.setdefault(node.kind, []).append(node)
        self._order: tuple[str, ...] | None = None

    @property
    def name(self) -> str:
        return self._name

    def get(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def __getitem__(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def by_kind(self, kind: NodeKind | str) -> list[Node]:
        return list(self._kind_index.get(NodeKind(kind), []))

    def references_from(self, node_id: str) -> tuple[Reference, ...]:
        return self._references[node_id]

    def references(self) -> list[Reference]:
        return [ref for refs in self._references.values() for ref in refs]

    def dependencies(self, node_id: str) -> tuple[str, ...]:
        """Nodes this node depends on, in first-reference order."""
        return self._dependencies[node_id]

    def dependents(self, node_id: str) -> list[str]:
        """Nodes that depend directly on this node, in declaration order."""
        return list(self._dependents[node_id])

    def transitive_dependents(self, node_id: str) -> list[str]:
        """Every node that depends on this one, directly or not (BFS order)."""
        seen: set[str] = set()
        result: list[str] = []
        queue = deque(self._dependents[node_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            result.append(current)
            queue.extend(self._dependents[current])
        return result

    @property
    def segments(self) -> Mapping[str, Segment]:
        return MappingProxyType(self._segments)

    @property
    def rules(self) -> tuple[AccessRule, ...]:
        return self._rules

    @property
    def order(self) -> tuple[str, ...]:
        """Topological order (dependencies first, ties by declaration order)."""
        if self._order is None:
            self._order = tuple(
                topological_order(list(self._nodes), self._dependencies)
            )
        return self._order

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"Graph({self._name}, nodes={len(self._nodes)})"


class GraphBuilder:
    """
    Accumulates nodes, references and network segmentation for one generation.

    References may point at nodes that are declared later in the same pass;
    they are checked when the pass ends with ``finalize()``. After a
    successful ``finalize()`` the builder is sealed and every mutator raises
    ``GraphSealedError``.
    """

    def __init__(self, name: str = "stack") -> None:
        self._name = name
        self._nodes: dict[str, Node] = {}
        self._segments: dict[str, Segment] = {}
        self._rules: list[AccessRule] = []
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def nodes(self) -> list[Node]:
        """Declared nodes in declaration order."""
        return list(self._nodes.values())

    @property
    def segments(self) -> Mapping[str, Segment]:
        return MappingProxyType(self._segments)

    @property
    def rules(self) -> list[AccessRule]:
        return list(self._rules)

    def _check_open(self, operation: str) -> None:
        if self._sealed:
            raise GraphSealedError(operation)

    @staticmethod
    def ref(node_id: str, output: str) -> OutputRef:
        """Handle to ``node_id``'s output; the node may be declared later."""
        return OutputRef(node_id, output)

    def declare(self, node: Node) -> Node:
        """Register a node. Raises DuplicateIdError if the id is taken."""
        self._check_open("declare")
        if node.id in self._nodes:
            raise DuplicateIdError(node.id)
        node._index = len(self._nodes)
        self._nodes[node.id] = node
        logger.debug("Declared %s (%s)", node.id, node.kind.value)
        return node

    def reference(self, from_node: str, prop: str, to_node: str, output: str) -> OutputRef:
        """
        Bind ``from_node``'s property to ``to_node``'s output.

        ``to_node`` only has to be declared by the time ``finalize()`` runs.
        """
        self._check_open("reference")
        node = self._nodes.get(from_node)
        if node is None:
            raise StackGraphError(
                f"Cannot bind property '{prop}' of an undeclared node", node_id=from_node
            )
        ref = OutputRef(to_node, output)
        node._properties[prop] = ref
        return ref

    def add_segment(self, segment: Segment) -> Segment:
        self._check_open("add_segment")
        if segment.name in self._segments:
            raise SegmentationError(f"Segment '{segment.name}' already declared")
        self._segments[segment.name] = segment
        return segment

    def allow(self, rule: AccessRule) -> AccessRule:
        """Add an access rule. Rules only ever grant access."""
        self._check_open("allow")
        self._rules.append(rule)
        return rule

    def _check_references(self) -> None:
        for node in self._nodes.values():
            for ref in node.references():
                target = self._nodes.get(ref.to_node)
                if target is None:
                    raise DanglingReferenceError(node.id, ref.property, ref.to_node)
                if ref.output not in target.output_names:
                    raise UnknownOutputError(
                        node.id, ref.to_node, ref.output, list(target.output_names)
                    )
            for dep in node.depends_on:
                if dep not in self._nodes:
                    raise DanglingReferenceError(node.id, "depends_on", dep)

    def finalize(self) -> Graph:
        """
        Close the declaration pass and return the sealed graph.

        Checks references, network segmentation and cycles; any failure is
        raised and nothing is sealed, so declarations can be corrected.
        """
        from stackgraph.core.segmentation import SegmentationModel

        self._check_open("finalize")
        self._check_references()
        graph = Graph(self._name, self._nodes, self._segments, self._rules)
        SegmentationModel(self._segments.values(), self._rules).validate(graph)
        order = graph.order
        self._sealed = True
        logger.info("Finalized graph %s: %d nodes", self._name, len(order))
        return graph

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes
