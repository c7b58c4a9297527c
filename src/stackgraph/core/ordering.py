"""Dependency ordering with cycle detection."""

from __future__ import annotations

import heapq
from typing import Mapping, Sequence

import networkx as nx

from stackgraph.core.errors import CyclicDependencyError


def topological_order(
    node_ids: Sequence[str],
    dependencies: Mapping[str, Sequence[str]],
) -> list[str]:
    """
    Order nodes so every node comes after all of its dependencies.

    Kahn's algorithm. Among nodes that become eligible at the same time,
    the one declared first (earliest in ``node_ids``) goes first, so the
    same declarations always produce the same order.

    Raises:
        CyclicDependencyError: naming every node that sits on a cycle.
    """
    index = {node_id: i for i, node_id in enumerate(node_ids)}
    remaining = {node_id: len(set(dependencies.get(node_id, ()))) for node_id in node_ids}
    dependents: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for node_id in node_ids:
        for dep in set(dependencies.get(node_id, ())):
            dependents[dep].append(node_id)

    ready = [(index[n], n) for n, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for dependent in dependents[node_id]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (index[dependent], dependent))

    if len(order) != len(node_ids):
        leftover = [n for n in node_ids if remaining[n] > 0]
        members, chain = describe_cycle(leftover, dependencies, index)
        raise CyclicDependencyError(members, chain)

    return order


def describe_cycle(
    leftover: Sequence[str],
    dependencies: Mapping[str, Sequence[str]],
    index: Mapping[str, int],
) -> tuple[list[str], list[str]]:
    """
    Find the nodes on cycles among the ones Kahn's algorithm could not order.

    Leftover nodes include dependents of a cycle that are not on it
    themselves; strongly connected components separate the two.

    Returns (members in declaration order, one concrete cycle as a chain).
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(leftover)
    for node_id in leftover:
        for dep in dependencies.get(node_id, ()):
            if dep in graph:
                graph.add_edge(node_id, dep)

    members: set[str] = set()
    for component in nx.strongly_connected_components(graph):
        if len(component) > 1:
            members.update(component)
        else:
            (only,) = component
            if graph.has_edge(only, only):
                members.add(only)

    ordered = sorted(members, key=lambda n: index[n])
    chain: list[str] = []
    if ordered:
        try:
            cycle_edges = nx.find_cycle(graph, source=ordered[0])
            chain = [source for source, _ in cycle_edges]
        except nx.NetworkXNoCycle:
            chain = []
    return ordered, chain
