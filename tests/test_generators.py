"""Tests for diagram generators."""

from stackgraph.core.graph import AccessRule, GraphBuilder, Node, Segment
from stackgraph.generators.dot import generate_dot
from stackgraph.generators.mermaid import generate_mermaid


def build_graph():
    builder = GraphBuilder("diagram")
    builder.add_segment(Segment(name="private", cidr="10.0.2.0/24", isolation="egress"))
    builder.allow(AccessRule(source="app-sg", destination="private", port=8080))
    builder.allow(AccessRule(source="private", destination="internet", port=443))
    builder.declare(Node("app-sg", "security_group", {}))
    builder.declare(Node("app", "compute_service", {}, segment="private", scope="app-sg"))
    return builder.finalize()


class TestMermaid:
    """Tests for Mermaid output."""

    def test_segment_scopes_use_subgraph_id(self):
        """Test that rules on a segment point at its subgraph."""
        output = generate_mermaid(build_graph())

        assert 'subgraph seg_private["private (egress)"]' in output
        assert "app_sg -.->|tcp/8080| seg_private" in output
        assert "seg_private -.->|tcp/443| internet" in output
        assert 'internet(("internet"))' in output
        assert " private\n" not in output

    def test_rules_hidden(self):
        """Test leaving access rules out."""
        output = generate_mermaid(build_graph(), show_rules=False)

        assert "-.->" not in output
        assert "internet" not in output


class TestDot:
    """Tests for DOT output."""

    def test_rules_drawn(self):
        output = generate_dot(build_graph())

        assert output.startswith("digraph")
        assert '"app-sg" -> "private"' in output
