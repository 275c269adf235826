"""Fakes for the collaborators of the release actions."""

from dataclasses import dataclass, field
import datetime
import logging
from typing import Any

from release_engine.chart import Chart, Renderer
from release_engine.discovery import (
    APIGroup,
    APIResource,
    APIResourceList,
    DiscoveryClient,
    ServerVersion,
)
from release_engine.exceptions import (
    ObjectExistsError,
    ObjectNotFoundError,
    ReleaseException,
)
from release_engine.kube import ClusterConnection, KubeClient, ObjectClient
from release_engine.manifest import Manifest
from release_engine.render import PostRenderer

_LOGGER = logging.getLogger(__name__)

CHART_NAME = "demo"

SERVICE = """apiVersion: v1
kind: Service
metadata:
  name: foo
spec:
  ports:
  - port: 80
"""

JOB_HOOK = """apiVersion: batch/v1
kind: Job
metadata:
  name: migrate
  annotations:
    helm.sh/hook: pre-install,pre-upgrade
    helm.sh/hook-weight: "5"
spec:
  template:
    spec:
      restartPolicy: Never
"""

NOTES = "Thank you for installing demo."


class FakeRenderer(Renderer):
    """A renderer returning a fixed set of files."""

    def __init__(self, files: dict[str, str]) -> None:
        self.files = files
        self.calls: list[str] = []
        self.values: list[dict[str, Any]] = []

    async def render(self, chart: Chart, values: dict[str, Any]) -> dict[str, str]:
        self.calls.append("render")
        self.values.append(values)
        return dict(self.files)

    async def render_with_client(
        self, chart: Chart, values: dict[str, Any], rest_config: Any
    ) -> dict[str, str]:
        self.calls.append("render_with_client")
        self.values.append(values)
        return dict(self.files)


class RenamingPostRenderer(PostRenderer):
    """Renames the demo service."""

    async def run(self, buffer: str) -> str:
        return buffer.replace("name: foo", "name: filtered")


class FakeDiscoveryClient(DiscoveryClient):
    """A discovery client with a fixed inventory."""

    def __init__(
        self,
        git_version: str = "v1.28.3",
        groups: list[APIGroup] | None = None,
        resources: list[APIResourceList] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.git_version = git_version
        self.groups = groups if groups is not None else [
            APIGroup(name="", versions=["v1"]),
            APIGroup(name="apps", versions=["apps/v1"]),
            APIGroup(name="batch", versions=["batch/v1"]),
        ]
        self.resources = resources if resources is not None else [
            APIResourceList(
                group_version="apps/v1",
                resources=[APIResource(name="deployments", kind="Deployment")],
            ),
        ]
        self.error = error
        self.invalidations = 0
        self.version_calls = 0

    def invalidate(self) -> None:
        self.invalidations += 1

    async def server_version(self) -> ServerVersion:
        self.version_calls += 1
        major, minor = self.git_version.lstrip("v").split(".")[:2]
        return ServerVersion(git_version=self.git_version, major=major, minor=minor)

    async def server_groups_and_resources(
        self,
    ) -> tuple[list[APIGroup], list[APIResourceList]]:
        if self.error is not None:
            raise self.error
        return self.groups, self.resources


@dataclass
class FakeKubeClient(KubeClient):
    """Records the operations applied to the cluster."""

    calls: list[tuple[str, list[str]]] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)
    errors: dict[str, BaseException] = field(default_factory=dict)

    def _record(self, op: str, manifests: list[Manifest]) -> None:
        self.calls.append((op, [str(m.head) for m in manifests]))
        if op in self.errors:
            raise self.errors[op]
        if op in self.fail_on:
            raise ReleaseException(f"{op} failed")

    async def create(self, manifests: list[Manifest]) -> None:
        self._record("create", manifests)

    async def update(self, original: list[Manifest], target: list[Manifest]) -> None:
        self._record("update", target)

    async def delete(self, manifests: list[Manifest]) -> None:
        self._record("delete", manifests)

    async def wait_for_completion(self, manifest: Manifest, timeout: float) -> None:
        self._record("wait", [manifest])


def _matches(obj: dict[str, Any], selector: dict[str, str]) -> bool:
    labels = obj.get("metadata", {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in selector.items())


class FakeObjectClient(ObjectClient):
    """Holds objects of one kind in memory."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}

    def get(self, name: str) -> dict[str, Any]:
        if name not in self.objects:
            raise ObjectNotFoundError(name)
        return self.objects[name]

    def list(self, selector: dict[str, str]) -> list[dict[str, Any]]:
        return [obj for obj in self.objects.values() if _matches(obj, selector)]

    def create(self, obj: dict[str, Any]) -> None:
        name = obj["metadata"]["name"]
        if name in self.objects:
            raise ObjectExistsError(name)
        self.objects[name] = obj

    def update(self, obj: dict[str, Any]) -> None:
        name = obj["metadata"]["name"]
        if name not in self.objects:
            raise ObjectNotFoundError(name)
        self.objects[name] = obj

    def delete(self, name: str) -> None:
        if self.objects.pop(name, None) is None:
            raise ObjectNotFoundError(name)


class FakeConnection(ClusterConnection):
    """A connection handing out the fake clients."""

    def __init__(self, discovery: FakeDiscoveryClient | None = None) -> None:
        self.discovery = discovery or FakeDiscoveryClient()
        self.kube_client = FakeKubeClient()
        self.object_clients: dict[tuple[str, str], FakeObjectClient] = {}

    def to_rest_config(self) -> Any:
        return {"host": "https://cluster.local"}

    def to_discovery_client(self) -> DiscoveryClient:
        return self.discovery

    def to_kube_client(self) -> KubeClient:
        return self.kube_client

    def to_object_client(self, kind: str, namespace: str) -> ObjectClient:
        return self.object_clients.setdefault((kind, namespace), FakeObjectClient())


class FakeClock:
    """A clock advancing one second per call."""

    def __init__(self) -> None:
        self.current = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)

    def __call__(self) -> datetime.datetime:
        self.current += datetime.timedelta(seconds=1)
        return self.current

