"""Namespaced, write-once store for resolved attributes."""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Any, Iterator

import yaml

from stackgraph.core.errors import AttributeConflictError, InvalidKeyError

logger = logging.getLogger(__name__)

_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")


def normalize_key(key: str) -> str:
    """
    Validate a hierarchical key and return it without a leading slash.

    ``/hrs/database/endpoint`` and ``hrs/database/endpoint`` name the same
    attribute.
    """
    stripped = key[1:] if key.startswith("/") else key
    parts = stripped.split("/")
    if not stripped or not all(_SEGMENT.match(p) for p in parts):
        raise InvalidKeyError(f"Invalid attribute key: {key!r}", context={"key": key})
    return stripped


class AttributePublisher:
    """
    Published attribute store for one deployment generation.

    Each key is written at most once per generation: publishing an equal
    value again is a no-op, publishing a different one raises
    ``AttributeConflictError``. Safe to call from provisioning workers.
    """

    def __init__(self, namespace: str | None = None, generation: int = 1) -> None:
        self._namespace = normalize_key(namespace) if namespace else None
        self._generation = generation
        self._values: dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def namespace(self) -> str | None:
        return self._namespace

    @property
    def generation(self) -> int:
        return self._generation

    def qualify(self, key: str) -> str:
        """Prefix a relative key with the publisher namespace."""
        key = normalize_key(key)
        if self._namespace:
            return f"{self._namespace}/{key}"
        return key

    def publish(self, key: str, value: Any) -> bool:
        """
        Publish ``value`` under ``key``.

        Returns True if the key was written, False if it already held an
        equal value.

        Raises:
            AttributeConflictError: the key already holds a different value.
        """
        key = normalize_key(key)
        with self._lock:
            if key in self._values:
                existing = self._values[key]
                if existing == value:
                    return False
                raise AttributeConflictError(key, existing, value)
            self._values[key] = value
        logger.debug("Published %s (generation %d)", key, self._generation)
        return True

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(normalize_key(key), default)

    def items(self, prefix: str | None = None) -> list[tuple[str, Any]]:
        """Published (key, value) pairs under an optional key prefix."""
        with self._lock:
            snapshot = sorted(self._values.items())
        if not prefix:
            return snapshot
        prefix = normalize_key(prefix)
        return [(k, v) for k, v in snapshot if k == prefix or k.startswith(prefix + "/")]

    def to_dict(self) -> dict[str, Any]:
        return dict(self.items())

    def dump(self, path: str | Path) -> None:
        """Write the published attributes to a YAML file."""
        path = Path(path)
        data = {"generation": self._generation, "attributes": self.to_dict()}
        with path.open("w") as f:
            yaml.safe_dump(data, f, sort_keys=True)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return normalize_key(key) in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_dict())
