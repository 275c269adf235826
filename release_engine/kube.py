"""Interfaces to the cluster used by the release actions.

The transport to the control plane is provided by the caller. A
`ClusterConnection` hands out the clients the actions need:

- a `DiscoveryClient` used to negotiate capabilities
- a `KubeClient` that applies and removes rendered resources
- an `ObjectClient` used by the storage drivers to persist release records
  as `Secret` or `ConfigMap` objects
"""

from abc import ABC, abstractmethod
from typing import Any

from .discovery import DiscoveryClient
from .manifest import Manifest

__all__ = [
    "ClusterConnection",
    "KubeClient",
    "ObjectClient",
]


class KubeClient(ABC):
    """Applies rendered resources to the cluster."""

    @abstractmethod
    async def create(self, manifests: list[Manifest]) -> None:
        """Create the resources, in order."""

    @abstractmethod
    async def update(self, original: list[Manifest], target: list[Manifest]) -> None:
        """Move the cluster from the original resources to the target resources.

        Resources present only in the original are removed.
        """

    @abstractmethod
    async def delete(self, manifests: list[Manifest]) -> None:
        """Delete the resources, in order, ignoring those already absent."""

    @abstractmethod
    async def wait_for_completion(self, manifest: Manifest, timeout: float) -> None:
        """Wait for a hook resource such as a Job or Pod to complete.

        Raises a ReleaseException if the resource fails or the timeout expires.
        """


class ObjectClient(ABC):
    """Synchronous access to the objects of one kind in one namespace.

    Objects are plain dicts in the shape of the resource, e.g.
    `{"metadata": {"name": ..., "labels": {...}}, "data": {...}}`.
    """

    @abstractmethod
    def get(self, name: str) -> dict[str, Any]:
        """Return the object, raising ObjectNotFoundError if it does not exist."""

    @abstractmethod
    def list(self, selector: dict[str, str]) -> list[dict[str, Any]]:
        """Return the objects carrying every label in the selector."""

    @abstractmethod
    def create(self, obj: dict[str, Any]) -> None:
        """Create the object, raising ObjectExistsError if it already exists."""

    @abstractmethod
    def update(self, obj: dict[str, Any]) -> None:
        """Replace the object, raising ObjectNotFoundError if it does not exist."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Delete the object, raising ObjectNotFoundError if it does not exist."""


class ClusterConnection(ABC):
    """A factory for the clients of a single cluster."""

    @abstractmethod
    def to_rest_config(self) -> Any:
        """Return the transport configuration passed to cluster-aware rendering."""

    @abstractmethod
    def to_discovery_client(self) -> DiscoveryClient:
        """Return a client for the API discovery endpoints."""

    @abstractmethod
    def to_kube_client(self) -> KubeClient:
        """Return a client that applies resources."""

    @abstractmethod
    def to_object_client(self, kind: str, namespace: str) -> ObjectClient:
        """Return a client for objects of `kind` in `namespace`."""
