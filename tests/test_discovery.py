"""Tests for capability negotiation."""

import pytest

from release_engine.capabilities import DEFAULT_CAPABILITIES, DEFAULT_VERSION_SET
from release_engine.discovery import APIGroup, CapabilityNegotiator
from release_engine.exceptions import DiscoveryDegradedError, DiscoveryException

from . import FakeDiscoveryClient


async def test_negotiate() -> None:
    """Test capabilities are discovered and cached."""
    client = FakeDiscoveryClient()
    negotiator = CapabilityNegotiator(lambda: client)
    assert negotiator.cached is None

    caps = await negotiator.get()
    assert caps.kube_version.version == "v1.28.3"
    assert caps.kube_version.major == "1"
    assert caps.kube_version.minor == "28"
    assert caps.api_versions.has("apps/v1")
    assert caps.api_versions.has("apps/v1/Deployment")
    assert not caps.api_versions.has("example.com/v1")

    assert await negotiator.get() is caps
    assert client.version_calls == 1
    assert client.invalidations == 1


async def test_refresh() -> None:
    """Test refreshing discards the cache and queries again."""
    client = FakeDiscoveryClient()
    negotiator = CapabilityNegotiator(lambda: client)
    await negotiator.get()

    client.git_version = "v1.29.0"
    caps = await negotiator.refresh()
    assert caps.kube_version.version == "v1.29.0"
    assert client.version_calls == 2
    assert client.invalidations == 2


async def test_degraded_discovery(caplog: pytest.LogCaptureFixture) -> None:
    """Test a broken API service does not fail negotiation."""
    client = FakeDiscoveryClient(
        error=DiscoveryDegradedError(
            {"metrics.k8s.io/v1beta1": "the server is currently unable to handle the request"},
            groups=[APIGroup(name="", versions=["v1"])],
        )
    )
    negotiator = CapabilityNegotiator(lambda: client)
    caps = await negotiator.get()
    assert list(caps.api_versions) == ["v1"]
    assert "orphaned API service" in caplog.text
    assert "metrics.k8s.io/v1beta1" in caplog.text
    assert "kubectl delete apiservice" in caplog.text


async def test_discovery_failure() -> None:
    """Test other discovery failures are fatal."""
    client = FakeDiscoveryClient(error=DiscoveryException("connection refused"))
    negotiator = CapabilityNegotiator(lambda: client)
    with pytest.raises(DiscoveryException, match="could not get apiVersions from Kubernetes"):
        await negotiator.get()
    assert negotiator.cached is None


async def test_empty_inventory() -> None:
    """Test an empty inventory falls back to the default version set."""
    client = FakeDiscoveryClient(groups=[], resources=[])
    caps = await CapabilityNegotiator(lambda: client).get()
    assert caps.api_versions == DEFAULT_VERSION_SET


async def test_no_cluster() -> None:
    """Test negotiating without a cluster connection."""
    with pytest.raises(DiscoveryException, match="no cluster connection"):
        await CapabilityNegotiator().get()


async def test_preset() -> None:
    """Test preset capabilities are used without a cluster."""
    negotiator = CapabilityNegotiator(preset=DEFAULT_CAPABILITIES)
    assert await negotiator.get() is DEFAULT_CAPABILITIES
