"""Provisioning collaborator interface and per-kind dispatch table."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol

from stackgraph.core.errors import StackGraphError
from stackgraph.core.schema import NodeKind

if TYPE_CHECKING:
    from stackgraph.core.graph import Node


class Provider(Protocol):
    """
    External collaborator that turns a resolved node into real infrastructure.

    Both operations receive concrete properties (every reference already
    substituted) and return the node's outputs. Any exception is treated as
    a failure of that node only.
    """

    def create(self, node: Node, properties: Mapping[str, Any]) -> Mapping[str, Any]: ...

    def update(
        self,
        node: Node,
        properties: Mapping[str, Any],
        previous: Mapping[str, Any],
    ) -> Mapping[str, Any]: ...


class ProviderTable:
    """Maps each node kind to the provider that handles it."""

    def __init__(
        self,
        providers: Mapping[NodeKind | str, Provider] | None = None,
        default: Provider | None = None,
    ) -> None:
        self._providers: dict[NodeKind, Provider] = {
            NodeKind(kind): provider for kind, provider in (providers or {}).items()
        }
        self._default = default

    def register(self, kind: NodeKind | str, provider: Provider) -> None:
        self._providers[NodeKind(kind)] = provider

    def has(self, kind: NodeKind | str) -> bool:
        return NodeKind(kind) in self._providers

    def for_kind(self, kind: NodeKind | str) -> Provider:
        kind = NodeKind(kind)
        provider = self._providers.get(kind, self._default)
        if provider is None:
            raise StackGraphError(
                f"No provider registered for kind '{kind.value}'",
                context={"kind": kind.value},
            )
        return provider

    @property
    def kinds(self) -> set[NodeKind]:
        return set(self._providers)

    @classmethod
    def uniform(cls, provider: Provider) -> ProviderTable:
        """A table sending every kind to the same provider."""
        return cls(default=provider)
