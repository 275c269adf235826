"""Tests for the session configuration."""

import logging
from typing import Any

import pytest

from release_engine.action import Configuration
from release_engine.capabilities import DEFAULT_CAPABILITIES
from release_engine.discovery import CapabilityNegotiator
from release_engine.exceptions import (
    ConfigurationError,
    InputException,
    ReleaseException,
    ReleaseNotFoundError,
    StorageWriteError,
)
from release_engine.release import Info, Release, Status
from release_engine.storage import (
    ConfigMapsDriver,
    MemoryDriver,
    SQLDriver,
    SecretsDriver,
    Storage,
)
from release_engine.storage.sql import CONNECTION_STRING_ENV

from . import FakeConnection, FakeObjectClient


class FailingDriver(MemoryDriver):
    """A memory driver failing every update."""

    def update(self, key: str, rls: Release) -> None:
        raise StorageWriteError(f"update: failed to update {key}: etcdserver: request timed out")


class FlakyObjectClient(FakeObjectClient):
    """An object client whose updates lose the connection."""

    def update(self, obj: dict[str, Any]) -> None:
        raise ConnectionError("connection reset")


def test_memory_driver_reused(connection: FakeConnection) -> None:
    """Test the memory driver keeps its records across namespaces."""
    config = Configuration()
    config.init(connection, "team-a", "memory")
    driver = config.storage.driver
    assert isinstance(driver, MemoryDriver)
    config.storage.create(Release(name="web", namespace="team-a"))
    storage = config.storage

    config.init(connection, "team-b", "memory")
    assert config.storage is storage
    assert config.storage.driver is driver
    assert driver.namespace == "team-b"
    assert config.storage.list_releases() == []

    config.init(connection, "team-a", "memory")
    assert [r.name for r in config.storage.list_releases()] == ["web"]


@pytest.mark.parametrize(
    ("driver", "driver_cls", "kind"),
    [
        ("", SecretsDriver, "Secret"),
        ("secret", SecretsDriver, "Secret"),
        ("configmap", ConfigMapsDriver, "ConfigMap"),
    ],
)
def test_cluster_drivers(
    connection: FakeConnection, driver: str, driver_cls: type, kind: str
) -> None:
    """Test the drivers storing records in the cluster."""
    config = Configuration()
    config.init(connection, "podinfo", driver)
    assert isinstance(config.storage.driver, driver_cls)
    config.storage.create(Release(name="podinfo", namespace="podinfo"))
    assert list(connection.object_clients) == [(kind, "podinfo")]
    assert config.kube is connection.kube_client


def test_cluster_driver_requires_connection() -> None:
    """Test the cluster drivers cannot be used offline."""
    with pytest.raises(ConfigurationError, match="requires a cluster connection"):
        Configuration().init(None, "default", "secrets")


def test_unknown_driver(connection: FakeConnection) -> None:
    """Test an unknown driver is fatal."""
    config = Configuration()
    with pytest.raises(ConfigurationError, match="Unknown driver"):
        config.init(connection, "default", "etcd")
    with pytest.raises(ConfigurationError, match="No storage driver configured"):
        config.storage


def test_sql_driver(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test selecting the SQL driver configured from the environment."""
    monkeypatch.setenv(CONNECTION_STRING_ENV, "sqlite://")
    config = Configuration()
    config.init(None, "default", "sql")
    assert isinstance(config.storage.driver, SQLDriver)
    config.storage.create(Release(name="demo", namespace="default"))
    assert config.storage.last("demo").version == 1


def test_no_connection() -> None:
    """Test cluster operations fail without a connection."""
    config = Configuration()
    config.init(None, "default", "memory")
    with pytest.raises(ReleaseException, match="No cluster connection"):
        config.kube


async def test_get_capabilities(config: Configuration, connection: FakeConnection) -> None:
    """Test capabilities are negotiated once per session."""
    caps = await config.get_capabilities()
    assert caps.kube_version.version == "v1.28.3"
    assert caps.api_versions.has("apps/v1/Deployment")
    assert await config.get_capabilities() is caps
    assert connection.discovery.version_calls == 1


async def test_preset_capabilities() -> None:
    """Test client-only operation with preset capabilities."""
    config = Configuration(capabilities=CapabilityNegotiator(preset=DEFAULT_CAPABILITIES))
    assert await config.get_capabilities() is DEFAULT_CAPABILITIES


def test_release_content(config: Configuration) -> None:
    """Test reading a revision of a release."""
    for status in (Status.SUPERSEDED, Status.DEPLOYED):
        config.storage.create(Release(name="demo", namespace="default", info=Info(status=status)))
    assert config.release_content("demo").version == 2
    assert config.release_content("demo", 1).status == Status.SUPERSEDED
    with pytest.raises(ReleaseNotFoundError):
        config.release_content("demo", 3)
    with pytest.raises(InputException):
        config.release_content("")


def test_record_release_lenient(caplog: pytest.LogCaptureFixture) -> None:
    """Test a failed write after a cluster change is logged, not raised."""
    config = Configuration(releases=Storage(FailingDriver("default")))
    rls = Release(name="demo", namespace="default", info=Info(status=Status.PENDING_INSTALL))
    config.storage.create(rls)
    rls.set_status(Status.DEPLOYED, "Install complete")
    with caplog.at_level(logging.WARNING):
        config.record_release(rls)
    assert "Failed to update release demo" in caplog.text
    assert config.storage.last("demo").status == Status.PENDING_INSTALL


def test_supersede_deployed(config: Configuration) -> None:
    """Test older deployed revisions are superseded."""
    config.storage.create(Release(name="demo", namespace="default", info=Info(status=Status.DEPLOYED)))
    rls = Release(name="demo", namespace="default", info=Info(status=Status.PENDING_UPGRADE))
    config.storage.create(rls)
    config.supersede_deployed(rls)
    assert config.storage.get("demo", 1).status == Status.SUPERSEDED
    assert config.storage.get("demo", 1).info.description == "Superseded"
    assert config.storage.get("demo", 2).status == Status.PENDING_UPGRADE


def test_timestamps(config: Configuration) -> None:
    """Test the clock used for release records."""
    first = config.now()
    assert config.now() > first


def test_record_release_transport_error(caplog: pytest.LogCaptureFixture) -> None:
    """Test a transport error while recording a release is logged, not raised."""
    config = Configuration(releases=Storage(SecretsDriver(FlakyObjectClient())))
    rls = Release(name="demo", namespace="default", info=Info(status=Status.PENDING_INSTALL))
    config.storage.create(rls)
    rls.set_status(Status.DEPLOYED, "Install complete")
    with caplog.at_level(logging.WARNING):
        config.record_release(rls)
    assert "Failed to update release demo: connection reset" in caplog.text
    assert config.storage.last("demo").status == Status.PENDING_INSTALL
