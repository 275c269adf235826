"""Session scoped configuration shared by the release actions.

A `Configuration` binds the cluster connection, the release storage, the
negotiated capabilities, the template renderer and a logger. It is created
once and may be reused sequentially by many actions, for example when a
process iterates over namespaces:

```python
from release_engine.action import Configuration
from release_engine.install import Install

config = Configuration(renderer=renderer)
config.init(connection, "podinfo", "secrets")
rls = await Install(config, release_name="podinfo").run(chart, values)
```
"""

from collections.abc import Callable
import datetime
import logging
from typing import Any

from .capabilities import Capabilities
from .chart import Chart, Renderer
from .discovery import CapabilityNegotiator
from .exceptions import ConfigurationError, ReleaseException
from .kube import ClusterConnection, KubeClient
from .release import Release, Status, validate_release_name
from .render import RenderOptions, RenderResult, render_resources
from .storage import (
    ConfigMapsDriver,
    Driver,
    DriverKind,
    MemoryDriver,
    SQLDriver,
    SecretsDriver,
    Storage,
)

__all__ = [
    "Configuration",
]

_LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Configuration:
    """The context shared by the release actions of a session."""

    def __init__(
        self,
        renderer: Renderer | None = None,
        *,
        connection: ClusterConnection | None = None,
        releases: Storage | None = None,
        kube_client: KubeClient | None = None,
        capabilities: CapabilityNegotiator | None = None,
        log: logging.Logger | None = None,
        timestamper: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        """Initialize Configuration.

        Passing `capabilities` built with a preset allows rendering without
        contacting a cluster.
        """
        self.renderer = renderer
        self.connection = connection
        self.releases = releases
        self.kube_client = kube_client
        self.log = log or _LOGGER
        self.capabilities = capabilities or CapabilityNegotiator(
            connection.to_discovery_client if connection is not None else None,
            log=self.log,
        )
        self.timestamper = timestamper

    def init(
        self,
        connection: ClusterConnection | None,
        namespace: str,
        driver: str | DriverKind | None,
        renderer: Renderer | None = None,
    ) -> None:
        """Bind the session to a cluster and select the storage driver.

        An already installed memory driver is kept with its records and only
        switched to the new namespace. An unknown driver raises
        ConfigurationError, which is not recoverable.
        """
        kind = driver if isinstance(driver, DriverKind) else DriverKind.parse(driver)
        store: Driver
        match kind:
            case DriverKind.SECRETS | DriverKind.CONFIGMAPS:
                if connection is None:
                    raise ConfigurationError(f"The {kind} driver requires a cluster connection")
                if kind == DriverKind.SECRETS:
                    store = SecretsDriver(connection.to_object_client("Secret", namespace))
                else:
                    store = ConfigMapsDriver(connection.to_object_client("ConfigMap", namespace))
            case DriverKind.MEMORY:
                if self.releases is not None and isinstance(self.releases.driver, MemoryDriver):
                    self.releases.driver.set_namespace(namespace)
                    store = self.releases.driver
                else:
                    store = MemoryDriver(namespace)
            case DriverKind.SQL:
                store = SQLDriver(namespace=namespace)

        if self.releases is None or self.releases.driver is not store:
            self.releases = Storage(store)
        _LOGGER.debug("Using %s storage driver for namespace %r", store.name, namespace)

        if connection is not None:
            self.connection = connection
            self.kube_client = connection.to_kube_client()
            self.capabilities = CapabilityNegotiator(connection.to_discovery_client, log=self.log)
        if renderer is not None:
            self.renderer = renderer

    @property
    def storage(self) -> Storage:
        """The release storage, raising ConfigurationError before `init`."""
        if self.releases is None:
            raise ConfigurationError("No storage driver configured")
        return self.releases

    @property
    def kube(self) -> KubeClient:
        """The client applying resources to the cluster."""
        if self.kube_client is None:
            raise ReleaseException("No cluster connection configured")
        return self.kube_client

    async def get_capabilities(self) -> Capabilities:
        """Return the capabilities of the cluster, negotiated on first use."""
        return await self.capabilities.get()

    def now(self) -> datetime.datetime:
        """Return the current time used to stamp release records."""
        return self.timestamper()

    def release_content(self, name: str, version: int = 0) -> Release:
        """Return a revision of a release, the latest one when `version` is zero."""
        validate_release_name(name)
        if version <= 0:
            return self.storage.last(name)
        return self.storage.get(name, version)

    def record_release(self, rls: Release) -> None:
        """Persist a record after the cluster was modified.

        A failure to persist is logged and not raised, since the cluster
        change cannot be rolled back.
        """
        try:
            self.storage.upsert(rls)
        except Exception as err:
            self.log.warning(
                "warning: Failed to update release %s: %s", rls.name, err, exc_info=True
            )

    def supersede_deployed(self, rls: Release) -> None:
        """Mark the deployed revisions other than `rls` as superseded."""
        for previous in self.storage.deployed_all(rls.name):
            if previous.version == rls.version:
                continue
            previous.set_status(Status.SUPERSEDED, "Superseded")
            self.record_release(previous)

    async def render_resources(
        self, chart: Chart, values: dict[str, Any], options: RenderOptions
    ) -> RenderResult:
        """Render the chart into sorted hooks, manifests and notes."""
        return await render_resources(self, chart, values, options)
