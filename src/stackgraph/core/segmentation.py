"""Network segmentation: segments, scopes and default-deny access rules."""

from __future__ import annotations

import ipaddress
import logging
from collections import deque
from typing import TYPE_CHECKING, Iterable

from stackgraph.core.errors import (
    AccessNotGrantedError,
    DanglingReferenceError,
    SegmentationError,
)
from stackgraph.core.schema import (
    INTERNET,
    SEGMENT_BEARING_KINDS,
    AccessRuleSchema,
    Isolation,
    NodeKind,
    SegmentSchema,
)

if TYPE_CHECKING:
    from stackgraph.core.graph import Graph, Node

logger = logging.getLogger(__name__)

ANY_PORT = 0
ANY_PROTOCOL = "any"


def rule_matches(rule: AccessRuleSchema, port: int, protocol: str) -> bool:
    if rule.port not in (ANY_PORT, port):
        return False
    return rule.protocol in (ANY_PROTOCOL, protocol)


class SegmentationModel:
    """
    Segments plus an allow-list of access rules between scopes.

    A scope is a security group node id, a segment name or ``internet``.
    Nothing is reachable unless a rule, or a chain of rules on the same
    port and protocol, grants it. The only implicit grant is internet
    egress from public and egress-only segments.
    """

    def __init__(
        self,
        segments: Iterable[SegmentSchema],
        rules: Iterable[AccessRuleSchema],
    ) -> None:
        self._segments = {s.name: s for s in segments}
        self._rules = list(rules)
        self._by_source: dict[str, list[AccessRuleSchema]] = {}
        for rule in self._rules:
            self._by_source.setdefault(rule.source, []).append(rule)

    @property
    def segments(self) -> dict[str, SegmentSchema]:
        return dict(self._segments)

    @property
    def rules(self) -> list[AccessRuleSchema]:
        return list(self._rules)

    def isolation_of(self, node: Node) -> Isolation | None:
        if node.segment is None:
            return None
        return self._segments[node.segment].isolation

    @staticmethod
    def scopes_of(node: Node) -> list[str]:
        """Scopes a node's traffic originates from or arrives at."""
        return [s for s in (node.scope, node.segment) if s]

    def reachable(
        self,
        source: str,
        destination: str,
        port: int,
        protocol: str = "tcp",
    ) -> list[AccessRuleSchema] | None:
        """
        Find the chain of rules granting ``source`` access to ``destination``.

        Returns the rules in hop order, or None when no chain exists. A scope
        reaches itself only through an explicit rule.
        """
        queue: deque[tuple[str, list[AccessRuleSchema]]] = deque([(source, [])])
        visited = {source}
        while queue:
            scope, chain = queue.popleft()
            for rule in self._by_source.get(scope, []):
                if not rule_matches(rule, port, protocol):
                    continue
                hop = chain + [rule]
                if rule.destination == destination:
                    return hop
                if rule.destination not in visited:
                    visited.add(rule.destination)
                    queue.append((rule.destination, hop))
        return None

    def check_capability(self, graph: Graph, node: Node, target: str, port: int, protocol: str) -> list[AccessRuleSchema]:
        """
        Verify a node may reach ``target`` on ``port``.

        Returns the granting rule chain (empty for implicit internet egress).
        """
        source_scopes = self.scopes_of(node)
        if target == INTERNET:
            isolation = self.isolation_of(node)
            if isolation is None or isolation.has_internet_egress:
                return []
            raise AccessNotGrantedError(node.id, target, port, protocol, source_scopes, [INTERNET])

        target_node = graph.get(target)
        if target_node is None:
            raise DanglingReferenceError(node.id, "capabilities", target)
        target_scopes = self.scopes_of(target_node)
        for source in source_scopes:
            for destination in target_scopes:
                chain = self.reachable(source, destination, port, protocol)
                if chain:
                    return chain
        raise AccessNotGrantedError(node.id, target, port, protocol, source_scopes, target_scopes)

    def _validate_segments(self, graph: Graph) -> None:
        networks = []
        for node in graph.by_kind(NodeKind.NETWORK):
            cidr = node.properties.get("cidr")
            if not isinstance(cidr, str):
                continue
            try:
                networks.append(ipaddress.ip_network(cidr))
            except ValueError as e:
                raise SegmentationError(f"Invalid network range: {e}", node_id=node.id) from e
        parsed = [(s.name, ipaddress.ip_network(s.cidr)) for s in self._segments.values()]
        for i, (name_a, net_a) in enumerate(parsed):
            for name_b, net_b in parsed[i + 1:]:
                if net_a.overlaps(net_b):
                    raise SegmentationError(
                        f"Segments '{name_a}' ({net_a}) and '{name_b}' ({net_b}) overlap",
                        context={"segments": [name_a, name_b]},
                    )
            if networks and not any(
                net_a.version == net.version and net_a.subnet_of(net) for net in networks
            ):
                raise SegmentationError(
                    f"Segment '{name_a}' ({net_a}) is outside every network address range",
                    context={"segment": name_a},
                )

    def _validate_assignments(self, graph: Graph) -> None:
        for node in graph:
            if node.scope is not None:
                group = graph.get(node.scope)
                if group is None or group.kind != NodeKind.SECURITY_GROUP:
                    raise SegmentationError(
                        f"Scope '{node.scope}' is not a declared security group",
                        node_id=node.id,
                    )
            if node.kind == NodeKind.SUBNET and node.segment is None:
                raise SegmentationError("Subnet is not assigned to a segment", node_id=node.id)
            if node.segment is None:
                continue
            if node.kind not in SEGMENT_BEARING_KINDS:
                raise SegmentationError(
                    f"Nodes of kind '{node.kind.value}' cannot be placed in a segment",
                    node_id=node.id,
                )
            if node.segment not in self._segments:
                raise SegmentationError(
                    f"Unknown segment '{node.segment}'",
                    node_id=node.id,
                    context={"segment": node.segment},
                )
            cidr = node.properties.get("cidr") if node.kind == NodeKind.SUBNET else None
            if isinstance(cidr, str):
                segment = ipaddress.ip_network(self._segments[node.segment].cidr)
                try:
                    subnet = ipaddress.ip_network(cidr)
                except ValueError as e:
                    raise SegmentationError(f"Invalid subnet range: {e}", node_id=node.id) from e
                if subnet.version != segment.version or not subnet.subnet_of(segment):
                    raise SegmentationError(
                        f"Subnet range {subnet} is outside segment '{node.segment}' ({segment})",
                        node_id=node.id,
                    )

    def _validate_rules(self, graph: Graph) -> None:
        groups = {n.id for n in graph.by_kind(NodeKind.SECURITY_GROUP)}
        known = groups | set(self._segments) | {INTERNET}
        for rule in self._rules:
            for scope in (rule.source, rule.destination):
                if scope not in known:
                    raise SegmentationError(
                        f"Access rule references unknown scope '{scope}'",
                        context={"rule": rule.model_dump()},
                    )
            source_segment = self._segments.get(rule.source)
            if (
                rule.destination == INTERNET
                and source_segment is not None
                and not source_segment.isolation.has_internet_egress
            ):
                raise SegmentationError(
                    f"Isolated segment '{rule.source}' cannot be granted internet access",
                    context={"rule": rule.model_dump()},
                )

    def validate(self, graph: Graph) -> None:
        """
        Validate segments, assignments, rules and every declared capability.

        Raises:
            SegmentationError: invalid segments, assignments or rules.
            AccessNotGrantedError: a capability no rule grants.
        """
        self._validate_segments(graph)
        self._validate_assignments(graph)
        self._validate_rules(graph)
        for node in graph:
            for capability in node.capabilities:
                chain = self.check_capability(
                    graph, node, capability.target, capability.port, capability.protocol
                )
                logger.debug(
                    "%s -> %s on %s/%d granted by %d rule(s)",
                    node.id,
                    capability.target,
                    capability.protocol,
                    capability.port,
                    len(chain),
                )

    def broad_grants(self) -> list[AccessRuleSchema]:
        """
        Rules granting more than one port or a whole segment.

        Not errors: surfaced for review since such breadth may be
        unintentional.
        """
        return [
            rule
            for rule in self._rules
            if rule.port == ANY_PORT
            or rule.protocol == ANY_PROTOCOL
            or rule.source in self._segments
            or rule.destination in self._segments
        ]
