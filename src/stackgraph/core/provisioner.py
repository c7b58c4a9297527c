"""Dependency-ordered, concurrent provisioning of a sealed graph."""

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, CancelledError, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from stackgraph.config import Settings
from stackgraph.core.errors import (
    BlockedDependentWarning,
    ProvisioningError,
    StackGraphError,
)
from stackgraph.core.graph import Graph, Node
from stackgraph.core.publisher import AttributePublisher
from stackgraph.core.refs import Pending
from stackgraph.core.resolver import OutputStore, ReferenceResolver
from stackgraph.core.schema import NodeKind, NodeState, PlanAction
from stackgraph.providers.base import ProviderTable
from stackgraph.providers.parameter import ParameterProvider

logger = logging.getLogger(__name__)


@dataclass
class PlanEntry:
    """One step of a provisioning plan."""

    node_id: str
    kind: NodeKind
    action: PlanAction
    dependencies: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "kind": self.kind.value,
            "action": self.action.value,
            "dependencies": list(self.dependencies),
        }


@dataclass
class GenerationState:
    """
    What a finished generation leaves behind for the next one.

    Fingerprints of the declarations that were provisioned, and the
    outputs they produced.
    """

    generation: int = 0
    fingerprints: dict[str, str] = field(default_factory=dict)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path) -> GenerationState:
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls(
            generation=int(data.get("generation", 0)),
            fingerprints=dict(data.get("fingerprints", {})),
            outputs={k: dict(v) for k, v in (data.get("outputs") or {}).items()},
        )

    def save(self, path: str | Path) -> None:
        path = Path(path)
        with path.open("w") as f:
            yaml.safe_dump(
                {
                    "generation": self.generation,
                    "fingerprints": self.fingerprints,
                    "outputs": self.outputs,
                },
                f,
                sort_keys=True,
            )


@dataclass
class GenerationReport:
    """Outcome of one provisioning pass."""

    generation: int
    plan: list[PlanEntry]
    states: dict[str, NodeState]
    errors: list[ProvisioningError] = field(default_factory=list)
    warnings: list[BlockedDependentWarning] = field(default_factory=list)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    published: dict[str, Any] = field(default_factory=dict)
    aborted: bool = False
    abort_reason: str | None = None

    def _with_state(self, *states: NodeState) -> list[str]:
        return [node_id for node_id, state in self.states.items() if state in states]

    @property
    def succeeded(self) -> list[str]:
        return self._with_state(NodeState.PROVISIONED, NodeState.SKIPPED)

    @property
    def failed(self) -> list[str]:
        return self._with_state(NodeState.FAILED)

    @property
    def blocked(self) -> list[str]:
        return self._with_state(NodeState.BLOCKED)

    @property
    def cancelled(self) -> list[str]:
        return self._with_state(NodeState.CANCELLED, NodeState.PENDING, NodeState.RESOLVING)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.aborted and not self.blocked

    def to_state(self, graph: Graph) -> GenerationState:
        """State for the next generation; only nodes that hold outputs are kept."""
        return GenerationState(
            generation=self.generation,
            fingerprints={
                node_id: graph[node_id].fingerprint()
                for node_id in self.succeeded
            },
            outputs={node_id: dict(self.outputs[node_id]) for node_id in self.succeeded},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "ok": self.ok,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "plan": [entry.to_dict() for entry in self.plan],
            "states": {k: v.value for k, v in self.states.items()},
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "outputs": self.outputs,
            "published": self.published,
        }


class Provisioner:
    """
    Provisions a sealed graph in dependency order.

    A node is handed to a worker only once every node it depends on has
    published its outputs; nodes without a dependency relationship run
    concurrently. A failed node blocks its transitive dependents and leaves
    independent branches alone. ``cancel()`` (or the configured timeout)
    stops new submissions while in-flight nodes finish.

    Each instance provisions one generation.
    """

    def __init__(
        self,
        graph: Graph,
        providers: ProviderTable,
        publisher: AttributePublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._graph = graph
        self._settings = settings or Settings()
        self._publisher = publisher
        self._providers = providers
        self._parameters: ParameterProvider | None = None
        self._outputs = OutputStore()
        self._resolver = ReferenceResolver(graph, self._outputs)
        self._cancel = threading.Event()
        self._cancel_reason: str | None = None
        self._started = False

    @property
    def publisher(self) -> AttributePublisher | None:
        """Store this generation publishes into; created by ``provision`` if not given."""
        return self._publisher

    @property
    def resolver(self) -> ReferenceResolver:
        return self._resolver

    def cancel(self, reason: str = "cancelled by operator") -> None:
        """Stop starting new nodes; in-flight nodes are allowed to finish."""
        if not self._cancel.is_set():
            self._cancel_reason = reason
            self._cancel.set()
            logger.warning("Provisioning cancelled: %s", reason)

    def plan(self, previous: GenerationState | None = None) -> list[PlanEntry]:
        """
        Ordered list of actions, computed before anything is provisioned.

        A node is skipped only when its declaration is unchanged since the
        previous generation and none of its dependencies will change either.

        Raises:
            CyclicDependencyError: the graph cannot be ordered.
        """
        entries: list[PlanEntry] = []
        actions: dict[str, PlanAction] = {}
        for node_id in self._graph.order:
            node = self._graph[node_id]
            deps = list(self._graph.dependencies(node_id))
            if previous is None or node_id not in previous.outputs:
                action = PlanAction.CREATE
            elif previous.fingerprints.get(node_id) == node.fingerprint() and all(
                actions[d] == PlanAction.SKIP for d in deps
            ):
                action = PlanAction.SKIP
            else:
                action = PlanAction.UPDATE
            actions[node_id] = action
            entries.append(PlanEntry(node_id, node.kind, action, deps))
        return entries

    def _publish_outputs(self, node_id: str, outputs: Mapping[str, Any]) -> None:
        if not self._settings.publish_outputs:
            return
        for name, value in outputs.items():
            self._publisher.publish(self._publisher.qualify(f"{node_id}/{name}"), value)

    def _builtin_parameter(self, node: Node) -> bool:
        return node.kind == NodeKind.PARAMETER and not self._providers.has(NodeKind.PARAMETER)

    def _provider_for(self, node: Node) -> Any:
        if self._builtin_parameter(node):
            return self._parameters
        return self._providers.for_kind(node.kind)

    def _run_node(
        self,
        node: Node,
        action: PlanAction,
        properties: Mapping[str, Any],
        previous: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        """Worker body: call the provider, record and publish outputs."""
        try:
            provider = self._provider_for(node)
            if action == PlanAction.UPDATE and previous is not None:
                result = provider.update(node, properties, previous)
            else:
                result = provider.create(node, properties)
        except (ProvisioningError, CancelledError):
            raise
        except Exception as e:
            raise ProvisioningError(node.id, f"{action.value} failed: {e}", cause=e) from e

        missing = [name for name in node.output_names if name not in result]
        if missing:
            raise ProvisioningError(
                node.id, f"provider returned no value for outputs: {', '.join(missing)}"
            )
        outputs = {name: result[name] for name in node.output_names}
        self._outputs.set(node.id, outputs)
        try:
            self._publish_outputs(node.id, outputs)
        except StackGraphError as e:
            raise ProvisioningError(node.id, f"publishing outputs failed: {e}", cause=e) from e
        return outputs

    def provision(self, previous: GenerationState | None = None) -> GenerationReport:
        """
        Provision every node of the graph.

        Returns a report; node failures are collected there rather than
        raised. Structural problems (cycles) raise before any provider call.
        """
        if self._started:
            raise StackGraphError("Provisioner already ran; start a new generation instead")
        self._started = True

        if self._publisher is None:
            generation = previous.generation + 1 if previous else 1
            self._publisher = AttributePublisher(self._settings.namespace, generation=generation)
        self._parameters = ParameterProvider(self._publisher)

        plan = self.plan(previous)
        actions = {entry.node_id: entry.action for entry in plan}
        order_index = {entry.node_id: i for i, entry in enumerate(plan)}
        report = GenerationReport(
            generation=self._publisher.generation,
            plan=plan,
            states={entry.node_id: NodeState.PENDING for entry in plan},
        )
        states = report.states
        waiting = {node_id: set(self._graph.dependencies(node_id)) for node_id in states}
        ready = [(order_index[n], n) for n, deps in waiting.items() if not deps]
        heapq.heapify(ready)

        timeout = self._settings.timeout_seconds
        deadline = time.monotonic() + timeout if timeout else None
        in_flight: dict[Future[dict[str, Any]], str] = {}

        def release(node_id: str) -> None:
            for dependent in self._graph.dependents(node_id):
                waiting[dependent].discard(node_id)
                if not waiting[dependent] and states[dependent] == NodeState.PENDING:
                    heapq.heappush(ready, (order_index[dependent], dependent))

        def fail(node_id: str, error: ProvisioningError) -> None:
            states[node_id] = NodeState.FAILED
            report.errors.append(error)
            logger.error("Provisioning %s failed: %s", node_id, error.message)
            for dependent in self._graph.transitive_dependents(node_id):
                if states[dependent] == NodeState.PENDING:
                    states[dependent] = NodeState.BLOCKED
                    warning = BlockedDependentWarning(dependent, node_id)
                    report.warnings.append(warning)
                    logger.warning("%s", warning)

        logger.info(
            "Provisioning generation %d: %d nodes, %d workers",
            report.generation,
            len(plan),
            self._settings.max_workers,
        )
        with ThreadPoolExecutor(max_workers=self._settings.max_workers) as pool:
            while True:
                while ready and not self._cancel.is_set():
                    _, node_id = heapq.heappop(ready)
                    node = self._graph[node_id]
                    if actions[node_id] == PlanAction.SKIP:
                        carried = dict(previous.outputs[node_id]) if previous else {}
                        self._outputs.set(node_id, carried)
                        try:
                            self._publish_outputs(node_id, carried)
                            resolved = self._resolver.resolve(node_id)
                            if self._builtin_parameter(node) and not isinstance(resolved, Pending):
                                self._parameters.publish(node, resolved)
                        except (StackGraphError, ValueError) as e:
                            error = ProvisioningError(node_id, f"republishing failed: {e}", cause=e)
                            fail(node_id, error)
                            continue
                        states[node_id] = NodeState.SKIPPED
                        logger.debug("Skipped unchanged %s", node_id)
                        release(node_id)
                        continue
                    properties = self._resolver.resolve(node_id)
                    if isinstance(properties, Pending):
                        raise StackGraphError(
                            "Node became eligible with unresolved references: "
                            + ", ".join(self._resolver.unresolved(node_id)),
                            node_id=node_id,
                        )
                    states[node_id] = NodeState.RESOLVING
                    prior = previous.outputs.get(node_id) if previous else None
                    logger.info("%s %s (%s)", actions[node_id].value.capitalize(), node_id, node.kind.value)
                    future = pool.submit(self._run_node, node, actions[node_id], properties, prior)
                    in_flight[future] = node_id

                if not in_flight:
                    break

                remaining = None
                if deadline is not None and not self._cancel.is_set():
                    remaining = max(0.0, deadline - time.monotonic())
                done, _ = wait(list(in_flight), timeout=remaining, return_when=FIRST_COMPLETED)
                if not done:
                    self.cancel(f"timed out after {timeout}s")
                    continue

                for future in done:
                    node_id = in_flight.pop(future)
                    try:
                        future.result()
                    except ProvisioningError as e:
                        fail(node_id, e)
                        continue
                    except CancelledError:
                        states[node_id] = NodeState.CANCELLED
                        self.cancel(f"{node_id} received a cancellation signal")
                        continue
                    states[node_id] = NodeState.PROVISIONED
                    logger.info("Provisioned %s", node_id)
                    release(node_id)

        if self._cancel.is_set():
            report.aborted = True
            report.abort_reason = self._cancel_reason
            for node_id, state in states.items():
                if state in (NodeState.PENDING, NodeState.RESOLVING):
                    states[node_id] = NodeState.CANCELLED

        report.outputs = self._outputs.to_dict()
        report.published = self._publisher.to_dict()
        logger.info(
            "Generation %d finished: %d succeeded, %d failed, %d blocked%s",
            report.generation,
            len(report.succeeded),
            len(report.failed),
            len(report.blocked),
            " (aborted)" if report.aborted else "",
        )
        return report
