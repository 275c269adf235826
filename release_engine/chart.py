"""Representation of a chart as consumed by the release actions.

Loading charts from disk or from a repository is the responsibility of the
caller, as is the template engine itself. A `Renderer` turns a chart and its
resolved values into a mapping of template path to rendered text:

```python
from release_engine.chart import Chart, ChartMetadata, File

chart = Chart(
    metadata=ChartMetadata(name="podinfo", version="6.5.0"),
    templates=[File(name="templates/service.yaml", data="...")],
    values={"replicaCount": 1},
)
files = await renderer.render(chart, to_render_values(chart, values, options, caps))
```
"""

from abc import ABC, abstractmethod
import copy
from dataclasses import dataclass, field
import logging
import posixpath
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .capabilities import Capabilities

__all__ = [
    "Chart",
    "ChartMetadata",
    "CRD",
    "File",
    "ReleaseOptions",
    "Renderer",
    "coalesce_values",
    "to_render_values",
]

_LOGGER = logging.getLogger(__name__)

CRD_PREFIX = "crds/"
MANIFEST_EXTENSIONS = (".yaml", ".yml", ".json")


@dataclass
class ChartMetadata(DataClassDictMixin):
    """The identifying fields of a chart, persisted with each release."""

    name: str
    """The name of the chart."""

    version: str = ""
    """The SemVer version of the chart."""

    app_version: str | None = field(
        metadata=field_options(alias="appVersion"), default=None
    )
    """The version of the application enclosed in the chart."""

    kube_version: str | None = field(
        metadata=field_options(alias="kubeVersion"), default=None
    )
    """A SemVer constraint on the supported cluster versions."""

    description: str | None = None
    """A one sentence description of the chart."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True)
class File:
    """A file within a chart, its path relative to the chart root."""

    name: str
    data: str


@dataclass(frozen=True)
class CRD:
    """A custom resource definition shipped in the `crds/` directory of a chart."""

    name: str
    """Path of the file relative to its chart, e.g. `crds/crontab.yaml`."""

    filename: str
    """Path of the file including the full chart path."""

    file: File
    """The file contents."""


@dataclass
class Chart:
    """A chart with its templates and dependencies."""

    metadata: ChartMetadata
    """Chart metadata from the chart definition."""

    templates: list[File] = field(default_factory=list)
    """Templates rendered by the template engine."""

    files: list[File] = field(default_factory=list)
    """Other files in the chart, including `crds/`."""

    values: dict[str, Any] = field(default_factory=dict)
    """Default values of the chart."""

    dependencies: list["Chart"] = field(default_factory=list)
    """Sub-charts this chart depends on."""

    parent: "Chart | None" = field(default=None, repr=False, compare=False)
    """The chart depending on this one, if any."""

    def __post_init__(self) -> None:
        for dep in self.dependencies:
            dep.parent = self

    @property
    def name(self) -> str:
        """The name of the chart."""
        return self.metadata.name

    @property
    def full_path(self) -> str:
        """Path of the chart within the top level chart, e.g. `app/charts/db`."""
        if self.parent is not None:
            return posixpath.join(self.parent.full_path, "charts", self.name)
        return self.name

    def crd_objects(self) -> list[CRD]:
        """Return the custom resource definitions of this chart and its dependencies."""
        crds = [
            CRD(
                name=f.name,
                filename=posixpath.join(self.full_path, f.name),
                file=f,
            )
            for f in self.files
            if f.name.startswith(CRD_PREFIX) and f.name.endswith(MANIFEST_EXTENSIONS)
        ]
        for dep in self.dependencies:
            crds.extend(dep.crd_objects())
        return crds


@dataclass
class ReleaseOptions:
    """Release details exposed to templates as the `Release` object."""

    name: str
    namespace: str = "default"
    revision: int = 1
    is_install: bool = False
    is_upgrade: bool = False


def _coalesce(dst: dict[str, Any], src: dict[str, Any]) -> dict[str, Any]:
    """Merge `src` over `dst`, `src` taking precedence."""
    for key, value in src.items():
        if value is None:
            dst.pop(key, None)
        elif isinstance(value, dict) and isinstance(dst.get(key), dict):
            dst[key] = _coalesce(dst[key], value)
        else:
            if key in dst and isinstance(dst[key], dict) != isinstance(value, dict):
                _LOGGER.warning(
                    "Overwriting value of incompatible type for key %s", key
                )
            dst[key] = value
    return dst


def coalesce_values(chart: Chart, values: dict[str, Any] | None) -> dict[str, Any]:
    """Return user supplied values merged over the chart defaults.

    A `None` user value removes the key from the defaults.
    """
    return _coalesce(copy.deepcopy(chart.values), copy.deepcopy(values or {}))


def to_render_values(
    chart: Chart,
    values: dict[str, Any] | None,
    options: ReleaseOptions,
    caps: Capabilities,
) -> dict[str, Any]:
    """Compose the top level object passed to the template engine."""
    return {
        "Release": {
            "Name": options.name,
            "Namespace": options.namespace,
            "Revision": options.revision,
            "IsInstall": options.is_install,
            "IsUpgrade": options.is_upgrade,
            "Service": "release-engine",
        },
        "Chart": chart.metadata.to_dict(),
        "Capabilities": {
            "KubeVersion": {
                "Version": caps.kube_version.version,
                "Major": caps.kube_version.major,
                "Minor": caps.kube_version.minor,
            },
            "APIVersions": list(caps.api_versions),
        },
        "Values": coalesce_values(chart, values),
    }


class Renderer(ABC):
    """The template engine, turning a chart into rendered files keyed by path.

    Keys are template paths prefixed with the full chart path, for example
    `podinfo/templates/service.yaml` or `podinfo/charts/redis/templates/NOTES.txt`.
    """

    @abstractmethod
    async def render(
        self, chart: Chart, values: dict[str, Any]
    ) -> dict[str, str]:
        """Render the chart without contacting the cluster."""

    @abstractmethod
    async def render_with_client(
        self, chart: Chart, values: dict[str, Any], rest_config: Any
    ) -> dict[str, str]:
        """Render the chart allowing templates to look up live cluster objects."""
