"""Built-in provider for parameter nodes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from stackgraph.core.publisher import AttributePublisher

if TYPE_CHECKING:
    from stackgraph.core.graph import Node


class ParameterProvider:
    """
    Provisions ``parameter`` nodes by publishing them.

    A parameter declares a ``name`` (absolute attribute key such as
    ``/hrs/database/endpoint``) and a ``value``, usually a reference to
    another node's output. Values are stored as strings.
    """

    def __init__(self, publisher: AttributePublisher) -> None:
        self._publisher = publisher

    def publish(self, node: Node, properties: Mapping[str, Any]) -> str:
        """Publish the parameter's value and return the key it went to."""
        name = properties.get("name")
        if not name:
            raise ValueError("parameter requires a 'name' property")
        if "value" not in properties:
            raise ValueError("parameter requires a 'value' property")
        self._publisher.publish(name, str(properties["value"]))
        return name

    def create(self, node: Node, properties: Mapping[str, Any]) -> Mapping[str, Any]:
        return {"name": self.publish(node, properties), "version": 1}

    def update(
        self,
        node: Node,
        properties: Mapping[str, Any],
        previous: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        outputs = dict(self.create(node, properties))
        outputs["version"] = int(previous.get("version", 0)) + 1
        return outputs
