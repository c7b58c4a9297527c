"""Tests for the topological provisioner."""

import threading
import time
from concurrent.futures import CancelledError

import pytest

from stackgraph.config import Settings
from stackgraph.core.errors import BlockedDependentWarning, ProvisioningError, StackGraphError
from stackgraph.core.graph import GraphBuilder, Node
from stackgraph.core.provisioner import GenerationState, Provisioner
from stackgraph.core.publisher import AttributePublisher
from stackgraph.core.refs import OutputRef
from stackgraph.core.schema import NodeState, PlanAction
from stackgraph.providers import ProviderTable, SimulatedFailure, SimulatedProvider
from stackgraph.providers.simulated import OUTPUT_FACTORIES


def build_graph(db_port=5432):
    """A -> B -> C chain plus an independent D <- E branch.

    ``a`` depends on ``b`` which depends on ``c``; ``e`` depends on ``d``.
    """
    builder = GraphBuilder("chain")
    builder.declare(Node("a", "compute_service", {"upstream": OutputRef("b", "service_url")}))
    builder.declare(Node("b", "compute_service", {"db": OutputRef("c", "endpoint_address")}))
    builder.declare(Node("c", "database", {"engine": "postgres", "port": db_port}))
    builder.declare(Node("d", "log_sink", {"name": "/logs/e"}))
    builder.declare(Node("e", "compute_service", {"logs": OutputRef("d", "arn")}))
    return builder.finalize()


def parameter_graph(db_port=5432):
    """Two parameters publishing a database endpoint declared after them."""
    builder = GraphBuilder("params")
    builder.declare(
        Node(
            "db-endpoint",
            "parameter",
            {"name": "/app/database/endpoint", "value": OutputRef("db", "endpoint_address")},
        )
    )
    builder.declare(
        Node(
            "db-port",
            "parameter",
            {"name": "/app/database/port", "value": OutputRef("db", "endpoint_port")},
        )
    )
    builder.declare(Node("db", "database", {"port": db_port}))
    return builder.finalize()


def independent_graph(count):
    builder = GraphBuilder("flat")
    for i in range(count):
        builder.declare(Node(f"logs-{i}", "log_sink", {"name": f"/logs/{i}"}))
    return builder.finalize()


class RecordingProvider:
    """Provider recording resolved properties and the peak number of concurrent calls."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.properties = {}
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def create(self, node, properties):
        with self._lock:
            self.properties[node.id] = dict(properties)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1
        return OUTPUT_FACTORIES[node.kind](node, properties)

    def update(self, node, properties, previous):
        return self.create(node, properties)


class TestProvisionOrder:
    """Tests for dependency-ordered provisioning."""

    def test_all_provisioned(self):
        """Test provisioning a healthy graph."""
        graph = build_graph()
        provider = SimulatedProvider()

        report = Provisioner(graph, ProviderTable.uniform(provider)).provision()

        assert report.ok
        assert set(report.succeeded) == {"a", "b", "c", "d", "e"}
        assert report.errors == []
        assert report.warnings == []
        assert set(report.outputs) == {"a", "b", "c", "d", "e"}

    @pytest.mark.parametrize("workers", [1, 4])
    def test_dependencies_provisioned_first(self, workers):
        """Test that no node is provisioned before its dependencies."""
        graph = build_graph()
        provider = SimulatedProvider(delay=0.01)

        Provisioner(
            graph, ProviderTable.uniform(provider), settings=Settings(max_workers=workers)
        ).provision()

        position = {node_id: i for i, (_, node_id) in enumerate(provider.calls)}
        for node in graph:
            for dep in graph.dependencies(node.id):
                assert position[dep] < position[node.id]

    def test_resolved_properties_passed_to_provider(self):
        """Test that providers receive concrete values, never references."""
        graph = build_graph()
        provider = RecordingProvider()

        report = Provisioner(graph, ProviderTable.uniform(provider)).provision()

        assert provider.properties["b"]["db"] == report.outputs["c"]["endpoint_address"]
        assert provider.properties["a"]["upstream"] == report.outputs["b"]["service_url"]

    def test_independent_nodes_run_concurrently(self):
        """Test that nodes without dependencies between them overlap."""
        provider = RecordingProvider(delay=0.1)

        Provisioner(
            independent_graph(4), ProviderTable.uniform(provider), settings=Settings(max_workers=4)
        ).provision()

        assert provider.peak > 1

    def test_worker_limit(self):
        """Test that concurrency never exceeds max_workers."""
        provider = RecordingProvider(delay=0.02)

        Provisioner(
            independent_graph(4), ProviderTable.uniform(provider), settings=Settings(max_workers=1)
        ).provision()

        assert provider.peak == 1

    def test_single_use(self):
        """Test that a provisioner runs one generation only."""
        provisioner = Provisioner(build_graph(), ProviderTable.uniform(SimulatedProvider()))
        provisioner.provision()

        with pytest.raises(StackGraphError):
            provisioner.provision()


class TestFailures:
    """Tests for node-scoped failure handling."""

    def test_failure_blocks_dependents(self):
        """Test that a failed node blocks exactly its transitive dependents."""
        graph = build_graph()
        provider = SimulatedProvider(fail=["c"])

        report = Provisioner(graph, ProviderTable.uniform(provider)).provision()

        assert len(report.errors) == 1
        error = report.errors[0]
        assert isinstance(error, ProvisioningError)
        assert error.node_id == "c"
        assert isinstance(error.cause, SimulatedFailure)

        assert len(report.warnings) == 2
        assert all(isinstance(w, BlockedDependentWarning) for w in report.warnings)
        assert {w.node_id for w in report.warnings} == {"a", "b"}
        assert {w.failed_ancestor for w in report.warnings} == {"c"}

        assert report.states["c"] == NodeState.FAILED
        assert set(report.blocked) == {"a", "b"}
        assert report.states["d"] == NodeState.PROVISIONED
        assert report.states["e"] == NodeState.PROVISIONED
        assert not report.ok
        assert not report.aborted

    def test_blocked_nodes_never_called(self):
        """Test that blocked nodes are not handed to the provider."""
        provider = SimulatedProvider(fail=["c"])

        Provisioner(build_graph(), ProviderTable.uniform(provider)).provision()

        called = {node_id for _, node_id in provider.calls}
        assert "a" not in called
        assert "b" not in called

    def test_missing_outputs(self):
        """Test that a provider must return every output of the kind."""

        class Incomplete:
            def create(self, node, properties):
                return {}

            def update(self, node, properties, previous):
                return {}

        builder = GraphBuilder()
        builder.declare(Node("logs", "log_sink", {"name": "/logs"}))
        report = Provisioner(builder.finalize(), ProviderTable.uniform(Incomplete())).provision()

        assert report.failed == ["logs"]
        assert "arn" in report.errors[0].message

    def test_missing_provider(self):
        """Test that a kind without a provider fails only that node."""
        graph = build_graph()
        table = ProviderTable({"database": SimulatedProvider(), "log_sink": SimulatedProvider()})

        report = Provisioner(graph, table).provision()

        assert set(report.failed) == {"b", "e"}
        assert set(report.blocked) == {"a"}
        assert set(report.succeeded) == {"c", "d"}


class TestCancellation:
    """Tests for cancellation and timeouts."""

    def test_cancel_stops_new_submissions(self):
        """Test that cancelling lets in-flight nodes finish and cancels the rest."""
        graph = build_graph()
        holder = {}

        class CancellingProvider(SimulatedProvider):
            def create(self, node, properties):
                if node.id == "c":
                    holder["provisioner"].cancel("operator stop")
                return super().create(node, properties)

        provider = CancellingProvider()
        provisioner = Provisioner(
            graph, ProviderTable.uniform(provider), settings=Settings(max_workers=1)
        )
        holder["provisioner"] = provisioner

        report = provisioner.provision()

        assert report.aborted
        assert report.abort_reason == "operator stop"
        assert report.states["c"] == NodeState.PROVISIONED
        assert report.states["a"] == NodeState.CANCELLED
        assert report.states["b"] == NodeState.CANCELLED
        assert ("create", "a") not in provider.calls
        assert not report.ok

    def test_cancellation_signal_from_provider(self):
        """Test that a provider-raised cancellation aborts the generation."""

        class Interrupted(SimulatedProvider):
            def create(self, node, properties):
                if node.id == "c":
                    raise CancelledError()
                return super().create(node, properties)

        report = Provisioner(
            build_graph(), ProviderTable.uniform(Interrupted()), settings=Settings(max_workers=1)
        ).provision()

        assert report.states["c"] == NodeState.CANCELLED
        assert report.aborted
        assert "c" in report.abort_reason
        assert report.errors == []

    def test_timeout(self):
        """Test that the generation aborts when the deadline passes."""
        builder = GraphBuilder()
        builder.declare(Node("slow", "log_sink", {"name": "/logs/slow"}))
        builder.declare(Node("after", "compute_service", {"logs": OutputRef("slow", "arn")}))
        provider = SimulatedProvider(delay=0.3)

        report = Provisioner(
            builder.finalize(),
            ProviderTable.uniform(provider),
            settings=Settings(timeout_seconds=0.05),
        ).provision()

        assert report.aborted
        assert "timed out" in report.abort_reason
        assert report.states["slow"] == NodeState.PROVISIONED
        assert report.states["after"] == NodeState.CANCELLED


class TestPlan:
    """Tests for plans across generations."""

    def test_first_generation_creates(self):
        """Test that without previous state every node is created."""
        plan = Provisioner(build_graph(), ProviderTable()).plan()

        assert [e.action for e in plan] == [PlanAction.CREATE] * 5
        assert [e.node_id for e in plan] == ["c", "b", "a", "d", "e"]

    def test_unchanged_nodes_skipped(self):
        """Test that an unchanged graph is skipped entirely."""
        report = Provisioner(build_graph(), ProviderTable.uniform(SimulatedProvider())).provision()
        state = report.to_state(build_graph())

        plan = Provisioner(build_graph(), ProviderTable()).plan(state)

        assert {e.action for e in plan} == {PlanAction.SKIP}

    def test_change_updates_dependents(self):
        """Test that a changed node updates everything downstream of it."""
        report = Provisioner(build_graph(), ProviderTable.uniform(SimulatedProvider())).provision()
        state = report.to_state(build_graph())

        plan = Provisioner(build_graph(db_port=5433), ProviderTable()).plan(state)
        actions = {e.node_id: e.action for e in plan}

        assert actions == {
            "c": PlanAction.UPDATE,
            "b": PlanAction.UPDATE,
            "a": PlanAction.UPDATE,
            "d": PlanAction.SKIP,
            "e": PlanAction.SKIP,
        }

    def test_second_generation(self):
        """Test provisioning against a previous generation."""
        first = Provisioner(build_graph(), ProviderTable.uniform(SimulatedProvider())).provision()
        state = first.to_state(build_graph())
        provider = SimulatedProvider()

        graph = build_graph(db_port=5433)
        report = Provisioner(
            graph,
            ProviderTable.uniform(provider),
            publisher=AttributePublisher("stackgraph", generation=2),
        ).provision(state)

        assert report.ok
        assert report.generation == 2
        assert sorted(provider.calls) == [("update", "a"), ("update", "b"), ("update", "c")]
        assert report.states["d"] == NodeState.SKIPPED
        assert report.outputs["d"] == first.outputs["d"]
        assert report.outputs["c"]["endpoint_port"] == 5433

    def test_generation_follows_previous(self):
        """Test that the default publisher numbers the generation after the previous one."""
        first = Provisioner(build_graph(), ProviderTable.uniform(SimulatedProvider())).provision()
        provisioner = Provisioner(build_graph(), ProviderTable.uniform(SimulatedProvider()))

        report = provisioner.provision(first.to_state(build_graph()))

        assert first.generation == 1
        assert report.generation == 2
        assert provisioner.publisher.generation == 2

    def test_failed_nodes_not_carried(self):
        """Test that a retry after a failure re-creates only the failed subtree."""
        graph = build_graph()
        report = Provisioner(graph, ProviderTable.uniform(SimulatedProvider(fail=["c"]))).provision()
        state = report.to_state(graph)

        assert set(state.fingerprints) == {"d", "e"}

        plan = Provisioner(build_graph(), ProviderTable()).plan(state)
        actions = {e.node_id: e.action for e in plan}
        assert actions["c"] == PlanAction.CREATE
        assert actions["a"] == PlanAction.CREATE
        assert actions["d"] == PlanAction.SKIP

    def test_state_roundtrip(self, tmp_path):
        """Test saving and loading generation state."""
        graph = build_graph()
        report = Provisioner(graph, ProviderTable.uniform(SimulatedProvider())).provision()
        state = report.to_state(graph)
        path = tmp_path / "state.yml"

        state.save(path)
        loaded = GenerationState.load(path)

        assert loaded == state


class TestPublishing:
    """Tests for output publishing during provisioning."""

    def test_outputs_published(self):
        """Test that provisioned outputs are published under the namespace."""
        publisher = AttributePublisher("test")
        report = Provisioner(
            build_graph(), ProviderTable.uniform(SimulatedProvider()), publisher=publisher
        ).provision()

        assert publisher.get("test/d/arn") == report.outputs["d"]["arn"]
        assert report.published["test/c/endpoint_port"] == 5432

    def test_publishing_disabled(self):
        """Test turning automatic publishing off."""
        publisher = AttributePublisher("test")
        Provisioner(
            build_graph(),
            ProviderTable.uniform(SimulatedProvider()),
            publisher=publisher,
            settings=Settings(publish_outputs=False),
        ).provision()

        assert len(publisher) == 0

    def test_parameter_nodes(self):
        """Test that parameter nodes publish their resolved value."""
        publisher = AttributePublisher("test")

        report = Provisioner(
            parameter_graph(), ProviderTable.uniform(SimulatedProvider()), publisher=publisher
        ).provision()

        assert report.ok
        assert publisher.get("/app/database/endpoint") == report.outputs["db"]["endpoint_address"]
        assert publisher.get("/app/database/port") == "5432"
        assert report.outputs["db-port"] == {"name": "/app/database/port", "version": 1}

    def test_given_publisher_is_used(self):
        """Test that an empty publisher passed in receives the generation."""
        publisher = AttributePublisher("test", generation=7)
        provisioner = Provisioner(
            build_graph(), ProviderTable.uniform(SimulatedProvider()), publisher=publisher
        )

        report = provisioner.provision()

        assert provisioner.publisher is publisher
        assert report.generation == 7
        assert len(publisher) > 0

    def test_provider_table_reused(self):
        """Test that each generation publishes parameters into its own store."""
        table = ProviderTable.uniform(SimulatedProvider())
        first_publisher = AttributePublisher("test")
        first = Provisioner(parameter_graph(), table, publisher=first_publisher).provision()
        state = first.to_state(parameter_graph())

        second_publisher = AttributePublisher("test", generation=2)
        second = Provisioner(
            parameter_graph(db_port=5433), table, publisher=second_publisher
        ).provision(state)

        assert second.ok
        assert not table.has("parameter")
        assert first_publisher.get("/app/database/port") == "5432"
        assert second_publisher.get("/app/database/port") == "5433"
        assert second.outputs["db-port"]["version"] == 2

    def test_skipped_parameters_republished(self):
        """Test that an unchanged parameter still appears in the new generation's store."""
        first = Provisioner(
            parameter_graph(), ProviderTable.uniform(SimulatedProvider())
        ).provision()
        state = first.to_state(parameter_graph())
        provider = SimulatedProvider()
        publisher = AttributePublisher("test", generation=2)

        report = Provisioner(
            parameter_graph(), ProviderTable.uniform(provider), publisher=publisher
        ).provision(state)

        assert set(report.states.values()) == {NodeState.SKIPPED}
        assert provider.calls == []
        assert publisher.get("/app/database/endpoint") == first.outputs["db"]["endpoint_address"]
        assert publisher.get("/app/database/port") == "5432"
