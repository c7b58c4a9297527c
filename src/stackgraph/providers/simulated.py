"""Simulated provider: deterministic fake outputs for dry runs and tests."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from stackgraph.core.schema import NodeKind

if TYPE_CHECKING:
    from stackgraph.core.graph import Node

logger = logging.getLogger(__name__)


class SimulatedFailure(RuntimeError):
    """Failure injected into a simulated provisioning call."""


def _suffix(node: Node) -> str:
    return hashlib.sha256(node.id.encode()).hexdigest()[:8]


def _network(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    return {"network_id": f"net-{_suffix(node)}", "cidr": props.get("cidr", "10.0.0.0/16")}


def _subnet(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    return {"subnet_id": f"subnet-{_suffix(node)}", "cidr": props.get("cidr")}


def _security_group(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    return {"security_group_id": f"sg-{_suffix(node)}"}


def _database(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "endpoint_address": f"{node.id}.{_suffix(node)}.db.internal",
        "endpoint_port": props.get("port", 5432),
        "secret_name": f"{node.id}-credentials",
    }


def _cache(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "endpoint_address": f"{node.id}.{_suffix(node)}.cache.internal",
        "endpoint_port": props.get("port", 6379),
    }


def _compute_service(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    name = props.get("service_name", node.id)
    return {
        "service_url": f"{_suffix(node)}.{name}.run.internal",
        "service_arn": f"arn:sim:compute:{name}",
    }


def _parameter(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    return {"name": props.get("name", node.id), "version": 1}


def _log_sink(node: Node, props: Mapping[str, Any]) -> dict[str, Any]:
    name = props.get("name", node.id)
    return {"name": name, "arn": f"arn:sim:logs:{name}"}


OUTPUT_FACTORIES: dict[NodeKind, Callable[[Node, Mapping[str, Any]], dict[str, Any]]] = {
    NodeKind.NETWORK: _network,
    NodeKind.SUBNET: _subnet,
    NodeKind.SECURITY_GROUP: _security_group,
    NodeKind.DATABASE: _database,
    NodeKind.CACHE: _cache,
    NodeKind.COMPUTE_SERVICE: _compute_service,
    NodeKind.PARAMETER: _parameter,
    NodeKind.LOG_SINK: _log_sink,
}


class SimulatedProvider:
    """
    Provider that fabricates outputs instead of calling a cloud API.

    Outputs are derived from the node id, so repeated runs agree. Nodes
    listed in ``fail`` raise ``SimulatedFailure``; ``delay`` adds a sleep
    per call to exercise concurrency. Every call is recorded in ``calls``.
    """

    def __init__(self, fail: Iterable[str] = (), delay: float = 0.0) -> None:
        self.fail = set(fail)
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def _record(self, action: str, node: Node) -> None:
        with self._lock:
            self.calls.append((action, node.id))
        if self.delay:
            time.sleep(self.delay)
        if node.id in self.fail:
            raise SimulatedFailure(f"simulated {action} failure for {node.id}")

    def create(self, node: Node, properties: Mapping[str, Any]) -> Mapping[str, Any]:
        self._record("create", node)
        logger.debug("Simulated create of %s", node.id)
        return OUTPUT_FACTORIES[node.kind](node, properties)

    def update(
        self,
        node: Node,
        properties: Mapping[str, Any],
        previous: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        self._record("update", node)
        outputs = dict(previous)
        outputs.update(OUTPUT_FACTORIES[node.kind](node, properties))
        return outputs

    @property
    def created(self) -> list[str]:
        return [node_id for action, node_id in self.calls if action == "create"]
