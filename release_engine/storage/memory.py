"""In memory release record backend.

Records are partitioned by namespace. The active namespace scopes every
read, and an empty namespace reads across all of them. The same driver is
reused when a process services several namespaces in turn.
"""

from __future__ import annotations

from collections.abc import Callable
import copy
import logging

from release_engine.exceptions import ReleaseExistsError, ReleaseNotFoundError
from release_engine.release import Release

from .driver import Driver, parse_key
from .records import record_labels

__all__ = [
    "MemoryDriver",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"


class MemoryDriver(Driver):
    """A release backend holding records in process memory."""

    name = "Memory"

    def __init__(self, namespace: str = "") -> None:
        """Initialize MemoryDriver."""
        self._namespace = namespace
        self._cache: dict[str, dict[str, dict[int, Release]]] = {}
        self._high_water: dict[tuple[str, str], int] = {}

    @property
    def namespace(self) -> str:
        """The namespace scoping reads, empty for all namespaces."""
        return self._namespace

    def set_namespace(self, namespace: str) -> None:
        """Change the namespace scope without discarding any records."""
        _LOGGER.debug("Memory driver namespace set to %r", namespace)
        self._namespace = namespace

    def _namespaces(self) -> list[str]:
        if self._namespace:
            return [self._namespace]
        return list(self._cache)

    def _records(self) -> list[Release]:
        return [
            rls
            for namespace in self._namespaces()
            for revisions in self._cache.get(namespace, {}).values()
            for rls in revisions.values()
        ]

    def get(self, key: str) -> Release:
        """Return the record, raising ReleaseNotFoundError if it does not exist."""
        name, version = parse_key(key)
        for namespace in self._namespaces():
            if (rls := self._cache.get(namespace, {}).get(name, {}).get(version)) is not None:
                return copy.deepcopy(rls)
        raise ReleaseNotFoundError(f"release: not found: {key}")

    def list(self, filter: Callable[[Release], bool]) -> list[Release]:
        """Return every record in scope accepted by the filter."""
        return [copy.deepcopy(rls) for rls in self._records() if filter(rls)]

    def query(self, labels: dict[str, str]) -> list[Release]:
        """Return the records in scope carrying every label."""
        results = []
        for rls in self._records():
            stored = record_labels(rls)
            if all(stored.get(k) == v for k, v in labels.items()):
                results.append(copy.deepcopy(rls))
        return results

    def create(self, key: str, rls: Release) -> None:
        """Store a new record."""
        name, version = parse_key(key)
        namespace = rls.namespace or self._namespace or DEFAULT_NAMESPACE
        revisions = self._cache.setdefault(namespace, {}).setdefault(name, {})
        if version in revisions:
            raise ReleaseExistsError(f"release: already exists: {key}")
        revisions[version] = copy.deepcopy(rls)
        mark = (namespace, name)
        self._high_water[mark] = max(self._high_water.get(mark, 0), version)

    def update(self, key: str, rls: Release) -> None:
        """Replace an existing record."""
        name, version = parse_key(key)
        namespace = rls.namespace or self._namespace or DEFAULT_NAMESPACE
        revisions = self._cache.get(namespace, {}).get(name, {})
        if version not in revisions:
            raise ReleaseNotFoundError(f"release: not found: {key}")
        revisions[version] = copy.deepcopy(rls)

    def delete(self, key: str) -> Release:
        """Remove a record, the revision stays reserved."""
        name, version = parse_key(key)
        for namespace in self._namespaces():
            revisions = self._cache.get(namespace, {}).get(name, {})
            if (rls := revisions.pop(version, None)) is not None:
                if not revisions:
                    del self._cache[namespace][name]
                return rls
        raise ReleaseNotFoundError(f"release: not found: {key}")

    def high_water(self, name: str) -> int:
        """Return the highest revision ever stored for the name in scope."""
        namespaces = set(self._namespaces())
        return max(
            (
                version
                for (namespace, rls_name), version in self._high_water.items()
                if rls_name == name and namespace in namespaces
            ),
            default=0,
        )
