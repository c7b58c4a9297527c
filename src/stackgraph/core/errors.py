"""Exception hierarchy for topology declaration and provisioning.

Structural errors (duplicates, dangling references, cycles, access control)
are raised while the graph is being declared or sealed and are fatal to the
whole generation. Provisioning errors are node-scoped and are collected in the
generation report rather than raised.
"""

from __future__ import annotations

from typing import Any


class StackGraphError(Exception):
    """
    Base class for all stackgraph errors.

    Carries the originating node id (when there is one) and a context
    dictionary with the structured details of the failure.
    """

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.context = context or {}

    def __str__(self) -> str:
        if self.node_id:
            return f"[{self.node_id}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for reports and JSON output."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "node_id": self.node_id,
            "context": self.context,
        }


class DuplicateIdError(StackGraphError):
    """Raised when a node id is declared twice in one graph."""

    def __init__(self, node_id: str) -> None:
        super().__init__("Node id already declared", node_id=node_id)


class GraphSealedError(StackGraphError):
    """Raised when the builder is mutated after finalize()."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"Cannot {operation}: graph has been finalized",
            context={"operation": operation},
        )


class DanglingReferenceError(StackGraphError):
    """Raised at finalize() when a reference targets a node that was never declared."""

    def __init__(self, node_id: str, prop: str, target: str) -> None:
        super().__init__(
            f"Property '{prop}' references undeclared node '{target}'",
            node_id=node_id,
            context={"property": prop, "target": target},
        )


class UnknownOutputError(StackGraphError):
    """Raised when a reference names an output the target kind does not produce."""

    def __init__(self, node_id: str, target: str, output: str, available: list[str]) -> None:
        super().__init__(
            f"Node '{target}' has no output '{output}' (available: {', '.join(available) or 'none'})",
            node_id=node_id,
            context={"target": target, "output": output, "available": available},
        )


class UnresolvedValueError(StackGraphError):
    """Raised when an output reference is used as if it were a concrete value."""

    def __init__(self, target: str, output: str) -> None:
        super().__init__(
            f"Output '{target}.{output}' is unknown until provisioning; "
            "use a Template to compose it",
            node_id=target,
            context={"output": output},
        )


class CyclicDependencyError(StackGraphError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, members: list[str], chain: list[str]) -> None:
        self.members = members
        self.chain = chain
        rendered = " -> ".join(chain + chain[:1]) if chain else ", ".join(members)
        super().__init__(
            f"Dependency cycle between {len(members)} nodes: {rendered}",
            node_id=chain[0] if chain else (members[0] if members else None),
            context={"members": members, "chain": chain},
        )


class SegmentationError(StackGraphError):
    """Raised when segments or segment assignments are invalid."""


class AccessNotGrantedError(StackGraphError):
    """Raised when a node requests network access no rule grants."""

    def __init__(
        self,
        node_id: str,
        target: str,
        port: int,
        protocol: str,
        source_scopes: list[str],
        target_scopes: list[str],
    ) -> None:
        self.target = target
        self.port = port
        self.protocol = protocol
        super().__init__(
            f"No access rule grants {protocol}/{port} to '{target}' "
            f"(missing rule: {' | '.join(source_scopes) or '-'} -> "
            f"{' | '.join(target_scopes) or '-'} on {protocol}/{port})",
            node_id=node_id,
            context={
                "target": target,
                "port": port,
                "protocol": protocol,
                "source_scopes": source_scopes,
                "target_scopes": target_scopes,
            },
        )


class AttributeConflictError(StackGraphError):
    """Raised when a published key is re-published with a different value."""

    def __init__(self, key: str, existing: Any, new: Any) -> None:
        self.key = key
        super().__init__(
            f"Attribute '{key}' already published with a different value",
            context={"key": key, "existing": existing, "new": new},
        )


class InvalidKeyError(StackGraphError):
    """Raised for malformed published attribute keys."""


class ProvisioningError(StackGraphError):
    """Wraps a failure reported by the provisioning collaborator."""

    def __init__(self, node_id: str, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(
            message,
            node_id=node_id,
            context={"cause": repr(cause)} if cause else None,
        )


class TopologyLoadError(StackGraphError):
    """Raised when a topology declaration file cannot be loaded."""


class BlockedDependentWarning(UserWarning):
    """
    Informational: a node cannot be provisioned because an ancestor failed.

    Not raised; collected in the generation report so the failed subtree
    can be retried.
    """

    def __init__(self, node_id: str, failed_ancestor: str) -> None:
        super().__init__(f"[{node_id}] blocked by failed dependency '{failed_ancestor}'")
        self.node_id = node_id
        self.failed_ancestor = failed_ancestor

    def to_dict(self) -> dict[str, Any]:
        return {
            "warning": type(self).__name__,
            "node_id": self.node_id,
            "failed_ancestor": self.failed_ancestor,
        }
