"""Load topology declarations from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from stackgraph.core.errors import TopologyLoadError
from stackgraph.core.graph import GraphBuilder, Node
from stackgraph.core.refs import OutputRef, Template
from stackgraph.core.schema import TopologySchema


def convert_value(value: Any) -> Any:
    """
    Turn YAML reference syntax into reference objects.

    ``{ref: "db.endpoint_address"}`` becomes an ``OutputRef``;
    ``{template: "https://{}", refs: ["svc.service_url"]}`` a ``Template``.
    Other mappings and lists are converted recursively.
    """
    if isinstance(value, dict):
        if set(value) == {"ref"}:
            return OutputRef.parse(value["ref"])
        if set(value) == {"template", "refs"}:
            refs = [OutputRef.parse(r) for r in value["refs"]]
            return Template(value["template"], *refs)
        return {k: convert_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [convert_value(v) for v in value]
    return value


def builder_from_schema(schema: TopologySchema) -> GraphBuilder:
    """Declare every segment, rule and node of a topology on a new builder."""
    builder = GraphBuilder(schema.name)
    for segment in schema.segments:
        builder.add_segment(segment)
    for rule in schema.access_rules:
        builder.allow(rule)
    for node_schema in schema.nodes:
        try:
            properties = convert_value(node_schema.properties)
        except ValueError as e:
            raise TopologyLoadError(str(e), node_id=node_schema.id) from e
        builder.declare(
            Node(
                node_schema.id,
                node_schema.kind,
                properties,
                segment=node_schema.segment,
                scope=node_schema.scope,
                capabilities=node_schema.capabilities,
                depends_on=node_schema.depends_on,
                description=node_schema.description,
            )
        )
    return builder


def load_schema(path: str | Path) -> TopologySchema:
    """Read and validate a topology file."""
    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise TopologyLoadError(f"Cannot read topology {path}: {e}") from e
    except yaml.YAMLError as e:
        raise TopologyLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise TopologyLoadError(f"Topology {path} must be a mapping")

    try:
        return TopologySchema(**data)
    except ValidationError as e:
        raise TopologyLoadError(f"Invalid topology {path}: {e}") from e


def load_topology(path: str | Path) -> tuple[GraphBuilder, dict[str, Any]]:
    """
    Load a topology file.

    Returns the (unsealed) builder holding every declaration, and the
    ``settings`` block of the file.
    """
    schema = load_schema(path)
    return builder_from_schema(schema), dict(schema.settings)
