"""Pydantic schemas and enums for topology declarations."""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

INTERNET = "internet"


class NodeKind(str, Enum):
    """Kinds of infrastructure nodes."""

    NETWORK = "network"
    SUBNET = "subnet"
    SECURITY_GROUP = "security_group"
    DATABASE = "database"
    CACHE = "cache"
    COMPUTE_SERVICE = "compute_service"
    PARAMETER = "parameter"
    LOG_SINK = "log_sink"


# Capability table: outputs each kind produces once provisioned.
KIND_OUTPUTS: dict[NodeKind, tuple[str, ...]] = {
    NodeKind.NETWORK: ("network_id", "cidr"),
    NodeKind.SUBNET: ("subnet_id", "cidr"),
    NodeKind.SECURITY_GROUP: ("security_group_id",),
    NodeKind.DATABASE: ("endpoint_address", "endpoint_port", "secret_name"),
    NodeKind.CACHE: ("endpoint_address", "endpoint_port"),
    NodeKind.COMPUTE_SERVICE: ("service_url", "service_arn"),
    NodeKind.PARAMETER: ("name", "version"),
    NodeKind.LOG_SINK: ("name", "arn"),
}

# Kinds that live inside a network segment.
SEGMENT_BEARING_KINDS = frozenset(
    {NodeKind.SUBNET, NodeKind.DATABASE, NodeKind.CACHE, NodeKind.COMPUTE_SERVICE}
)


class Isolation(str, Enum):
    """Segment isolation levels."""

    PUBLIC = "public"  # Routed to and from the internet
    EGRESS = "egress"  # Outbound internet only
    ISOLATED = "isolated"  # No route to the internet

    @property
    def has_internet_egress(self) -> bool:
        return self is not Isolation.ISOLATED


class NodeState(str, Enum):
    """Per-node provisioning state within one generation."""

    DECLARED = "declared"
    PENDING = "pending"
    RESOLVING = "resolving"
    PROVISIONED = "provisioned"
    SKIPPED = "skipped"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            NodeState.PROVISIONED,
            NodeState.SKIPPED,
            NodeState.FAILED,
            NodeState.BLOCKED,
            NodeState.CANCELLED,
        )

    @property
    def is_satisfied(self) -> bool:
        """Outputs are available to dependents."""
        return self in (NodeState.PROVISIONED, NodeState.SKIPPED)


class PlanAction(str, Enum):
    """Action the provisioner will take for a node."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


def validate_port(port: int) -> int:
    # 0 means "all ports"
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


class CapabilitySchema(BaseModel):
    """A node's requirement to reach another node (or the internet)."""

    target: str
    port: int
    protocol: str = "tcp"

    @field_validator("port")
    @classmethod
    def check_port(cls, v: int) -> int:
        return validate_port(v)


class SegmentSchema(BaseModel):
    """Network segment declaration."""

    name: str
    cidr: str
    isolation: Isolation

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        ipaddress.ip_network(v, strict=True)
        return v


class AccessRuleSchema(BaseModel):
    """Allow-list entry between two scopes."""

    source: str
    destination: str
    port: int
    protocol: str = "tcp"
    description: str | None = None

    @field_validator("port")
    @classmethod
    def check_port(cls, v: int) -> int:
        return validate_port(v)


class NodeSchema(BaseModel):
    """
    Schema for a node declaration.

    Property values may be literals, ``{"ref": "node.output"}`` mappings
    or ``{"template": "...", "refs": [...]}`` mappings; the loader turns
    the latter two into references.
    """

    id: str
    kind: NodeKind
    properties: dict[str, Any] = Field(default_factory=dict)
    segment: str | None = None
    scope: str | None = None  # Security group node id
    capabilities: list[CapabilitySchema] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    description: str | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or "." in v or "/" in v:
            raise ValueError(f"Invalid node id: {v!r} (must be non-empty, no '.' or '/')")
        return v


class TopologySchema(BaseModel):
    """Schema for a complete topology declaration file."""

    name: str = "stack"
    schema_version: str = "1.0"
    settings: dict[str, Any] = Field(default_factory=dict)
    segments: list[SegmentSchema] = Field(default_factory=list)
    access_rules: list[AccessRuleSchema] = Field(default_factory=list)
    nodes: list[NodeSchema]
