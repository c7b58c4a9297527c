"""Deferred output references and the resolved/pending output sum type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Union

from stackgraph.core.errors import UnresolvedValueError


@dataclass(frozen=True)
class Resolved:
    """An output whose concrete value is known."""

    value: Any


class Pending:
    """An output not yet produced by the provisioner."""

    _instance: Pending | None = None

    def __new__(cls) -> Pending:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "PENDING"


PENDING = Pending()

OutputValue = Union[Resolved, Pending]


@dataclass(frozen=True)
class OutputRef:
    """
    Handle to an output of another node.

    The target node does not need to exist yet when the handle is created;
    only by the time the graph is finalized. The handle has no concrete value,
    so any attempt to use it as one (``str()``, formatting, concatenation,
    arithmetic) raises ``UnresolvedValueError``. Use ``Template`` to compose
    strings from outputs.
    """

    node_id: str
    output: str

    @classmethod
    def parse(cls, dotted: str) -> OutputRef:
        """Parse a ``node.output`` string."""
        node_id, sep, output = dotted.partition(".")
        if not sep or not node_id or not output:
            raise ValueError(f"Invalid reference {dotted!r}, expected 'node.output'")
        return cls(node_id, output)

    @property
    def dotted(self) -> str:
        return f"{self.node_id}.{self.output}"

    def _unresolved(self, *args: Any) -> Any:
        raise UnresolvedValueError(self.node_id, self.output)

    __str__ = _unresolved
    __format__ = _unresolved
    __add__ = _unresolved
    __radd__ = _unresolved
    __mod__ = _unresolved
    __int__ = _unresolved
    __float__ = _unresolved
    __index__ = _unresolved
    __bool__ = _unresolved

    def __repr__(self) -> str:
        return f"OutputRef({self.dotted})"


class Template:
    """
    A string composed from literals and output references.

    ``Template("https://{}", ref)`` renders only once every reference is
    resolved; until then the template itself is treated as pending.
    """

    def __init__(self, fmt: str, *refs: OutputRef) -> None:
        if fmt.count("{}") != len(refs):
            raise ValueError(
                f"Template {fmt!r} has {fmt.count('{}')} placeholders but {len(refs)} references"
            )
        self.fmt = fmt
        self.refs = refs

    def render(self, values: list[Any]) -> str:
        return self.fmt.format(*values)

    def __str__(self) -> str:
        first = self.refs[0] if self.refs else None
        if first is None:
            return self.fmt
        raise UnresolvedValueError(first.node_id, first.output)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Template):
            return NotImplemented
        return self.fmt == other.fmt and self.refs == other.refs

    def __hash__(self) -> int:
        return hash((self.fmt, self.refs))

    def __repr__(self) -> str:
        return f"Template({self.fmt!r}, {', '.join(r.dotted for r in self.refs)})"


@dataclass(frozen=True)
class Reference:
    """A dependency of one node's property on another node's output."""

    from_node: str
    property: str
    to_node: str
    output: str


def iter_refs(value: Any, path: str = "") -> Iterator[tuple[str, OutputRef]]:
    """Yield ``(property_path, ref)`` for every reference nested in a value."""
    if isinstance(value, OutputRef):
        yield path, value
    elif isinstance(value, Template):
        for ref in value.refs:
            yield path, ref
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from iter_refs(item, f"{path}.{key}" if path else str(key))
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            yield from iter_refs(item, f"{path}[{i}]")


def describe(value: Any) -> Any:
    """Render a property value with references shown symbolically.

    Used for plan fingerprints and diagrams, never for provisioning.
    """
    if isinstance(value, OutputRef):
        return "${" + value.dotted + "}"
    if isinstance(value, Template):
        return value.fmt.format(*("${" + r.dotted + "}" for r in value.refs))
    if isinstance(value, dict):
        return {k: describe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [describe(v) for v in value]
    return value
