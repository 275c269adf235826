"""Negotiation of capabilities with the cluster.

The `CapabilityNegotiator` lazily queries a `DiscoveryClient` for the cluster
version and the served API inventory, and caches the result until it is
explicitly invalidated. A long lived process that works against the same
cluster repeatedly can call `refresh()` to pick up newly installed APIs.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
import logging

from .capabilities import (
    Capabilities,
    KubeVersion,
    VersionSet,
    DEFAULT_VERSION_SET,
)
from .exceptions import DiscoveryDegradedError, DiscoveryException

__all__ = [
    "APIGroup",
    "APIResource",
    "APIResourceList",
    "CapabilityNegotiator",
    "DiscoveryClient",
    "ServerVersion",
    "get_version_set",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerVersion:
    """Version information reported by the cluster."""

    git_version: str
    major: str
    minor: str


@dataclass(frozen=True)
class APIGroup:
    """An API group and the `group/version` strings it serves."""

    name: str
    versions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class APIResource:
    """A resource kind served within a group version."""

    name: str
    kind: str


@dataclass(frozen=True)
class APIResourceList:
    """The resources served for a single `group/version`."""

    group_version: str
    resources: list[APIResource] = field(default_factory=list)


class DiscoveryClient(ABC):
    """Queries the cluster for the APIs it serves.

    Implementations report failures as `DiscoveryException`, and raise
    `DiscoveryDegradedError` with the partial inventory when only some API
    services failed to respond.
    """

    @abstractmethod
    def invalidate(self) -> None:
        """Drop any locally cached discovery information."""

    @abstractmethod
    async def server_version(self) -> ServerVersion:
        """Return the version of the cluster."""

    @abstractmethod
    async def server_groups_and_resources(
        self,
    ) -> tuple[list[APIGroup], list[APIResourceList]]:
        """Return the served API groups and resources."""


def _version_set(
    groups: list[APIGroup], resources: list[APIResourceList]
) -> VersionSet:
    if not groups and not resources:
        return DEFAULT_VERSION_SET
    versions: dict[str, None] = {}
    for group in groups:
        for group_version in group.versions:
            versions[group_version] = None
    for resource_list in resources:
        for resource in resource_list.resources:
            # A kind may be listed more than once for a group version
            versions[f"{resource_list.group_version}/{resource.kind}"] = None
    return VersionSet(sorted(versions))


async def get_version_set(client: DiscoveryClient) -> VersionSet:
    """Retrieve the set of API versions served by the cluster.

    A degraded discovery is re-raised with the version set built from the
    partial inventory attached as `groups`/`resources`.
    """
    try:
        groups, resources = await client.server_groups_and_resources()
    except DiscoveryDegradedError:
        raise
    except DiscoveryException as err:
        raise DiscoveryException(f"could not get apiVersions from Kubernetes: {err}") from err
    return _version_set(groups, resources)


class CapabilityNegotiator:
    """Lazily discovers and caches the capabilities of the cluster."""

    def __init__(
        self,
        client_factory: Callable[[], DiscoveryClient] | None = None,
        *,
        preset: Capabilities | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize CapabilityNegotiator.

        A `preset` is used for client-only operation where the cluster is
        never contacted.
        """
        self._client_factory = client_factory
        self._capabilities = preset
        self._log = log or _LOGGER

    @property
    def cached(self) -> Capabilities | None:
        """The cached capabilities, if already negotiated."""
        return self._capabilities

    def invalidate(self) -> None:
        """Drop the cached capabilities so the next call re-queries the cluster."""
        self._capabilities = None

    async def refresh(self) -> Capabilities:
        """Discard the cache and query the cluster again."""
        self.invalidate()
        return await self.get()

    async def get(self) -> Capabilities:
        """Return the capabilities, querying the cluster on first use."""
        if self._capabilities is not None:
            return self._capabilities
        if self._client_factory is None:
            raise DiscoveryException("could not get Kubernetes discovery client: no cluster connection")
        try:
            client = self._client_factory()
        except DiscoveryException as err:
            raise DiscoveryException(f"could not get Kubernetes discovery client: {err}") from err

        # Always fetch the latest server version and inventory
        client.invalidate()
        try:
            server_version = await client.server_version()
        except DiscoveryException as err:
            raise DiscoveryException(f"could not get server version from Kubernetes: {err}") from err

        try:
            api_versions = await get_version_set(client)
        except DiscoveryDegradedError as err:
            # The client continues building the inventory when an API service
            # is registered but unavailable, so the partial result is usable.
            self._log.warning(
                "WARNING: The Kubernetes server has an orphaned API service. Server reports: %s",
                err,
            )
            self._log.warning("WARNING: To fix this, kubectl delete apiservice <service-name>")
            api_versions = _version_set(err.groups, err.resources)

        self._capabilities = Capabilities(
            kube_version=KubeVersion(
                version=server_version.git_version,
                major=server_version.major,
                minor=server_version.minor,
            ),
            api_versions=api_versions,
        )
        _LOGGER.debug(
            "Negotiated capabilities for Kubernetes %s (%d api versions)",
            server_version.git_version,
            len(api_versions),
        )
        return self._capabilities
