"""Rendering of a chart into ordered manifests, hooks and notes.

`render_resources` drives the full render pass for a release:

- negotiate the cluster capabilities and check the chart `kubeVersion`
- render the templates, with live cluster lookups unless this is a dry run
- pull the notes out of the rendered files
- split the remaining files into sorted hooks and sorted manifests
- stamp the tracking label onto the manifests
- aggregate the output into a buffer, or write it to a directory
- run the post-renderer over the buffer

```python
from release_engine.render import RenderOptions, render_resources

result = await render_resources(
    config, chart, values, RenderOptions(release_name="podinfo")
)
print(result.manifest)
```
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
import aiofiles.os

from . import command
from .capabilities import is_compatible_range
from .chart import Chart
from .exceptions import (
    ConfigurationError,
    IncompatibleVersionError,
    ManifestParseError,
    PostRenderError,
    RenderError,
)
from .labels import LabelStamp, stamp_manifests
from .manifest import Manifest, SOURCE_TEMPLATE, parse_manifests
from .notes import extract_notes
from .release import Hook
from .sorter import INSTALL_ORDER, sort_manifests, sort_manifests_by_kind

if TYPE_CHECKING:
    from .action import Configuration

__all__ = [
    "ExecPostRenderer",
    "PostRenderer",
    "RenderOptions",
    "RenderResult",
    "render_resources",
]

_LOGGER = logging.getLogger(__name__)

POST_RENDER_ERROR = "error while running post render on files"


class PostRenderer(ABC):
    """A filter over the fully rendered manifest buffer."""

    @abstractmethod
    async def run(self, buffer: str) -> str:
        """Return the transformed manifest buffer."""


class ExecPostRenderer(PostRenderer):
    """A post-renderer that pipes the buffer through an external binary."""

    def __init__(self, binary: str, args: list[str] | None = None) -> None:
        """Initialize ExecPostRenderer."""
        self._binary = binary
        self._args = args or []

    async def run(self, buffer: str) -> str:
        """Run the binary with the buffer on stdin, returning its stdout."""
        cmd = command.Command([self._binary, *self._args], exc=PostRenderError)
        result = await command.run(cmd, stdin=buffer)
        if not result.strip():
            raise PostRenderError(f"post-renderer {self._binary!r} produced empty output")
        return result


@dataclass
class RenderOptions:
    """Options controlling a render pass."""

    release_name: str
    """The name of the release being rendered."""

    output_dir: Path | None = None
    """Write each manifest under this directory instead of buffering."""

    use_release_name: bool = False
    """Nest the written manifests under a directory named after the release."""

    sub_notes: bool = False
    """Include the notes of sub-charts."""

    include_crds: bool = False
    """Emit the custom resource definitions of the chart ahead of the manifests."""

    post_renderer: PostRenderer | None = None
    """Filter applied to the buffered output."""

    dry_run: bool = False
    """Render without cluster lookups."""

    label_stamp: LabelStamp | None = None
    """Tracking label stamped onto supported manifests."""


@dataclass
class RenderResult:
    """The output of a render pass."""

    hooks: list[Hook] = field(default_factory=list)
    """Lifecycle hooks, sorted by weight."""

    manifests: list[Manifest] = field(default_factory=list)
    """Ordinary resources in install order."""

    manifest: str = ""
    """The aggregated manifest buffer."""

    notes: str = ""
    """The rendered notes."""


def _dump_files(files: dict[str, str]) -> str:
    """Concatenate every non-empty rendered file for debugging."""
    return "".join(
        SOURCE_TEMPLATE.format(name=name, content=content)
        for name, content in sorted(files.items())
        if content.strip()
    )


class _FileWriter:
    """Writes manifests to files, appending after the first write to a path."""

    def __init__(self) -> None:
        self._written: set[Path] = set()

    async def write(self, path: Path, name: str, content: str) -> None:
        mode = "a" if path in self._written else "w"
        await aiofiles.os.makedirs(os.path.dirname(path), exist_ok=True)
        _LOGGER.debug("Writing %s (mode=%s)", path, mode)
        async with aiofiles.open(path, mode=mode) as output:
            await output.write(SOURCE_TEMPLATE.format(name=name, content=content))
        self._written.add(path)


async def _render_files(
    config: "Configuration", chart: Chart, values: dict[str, Any], dry_run: bool
) -> dict[str, str]:
    if (renderer := config.renderer) is None:
        raise ConfigurationError("No renderer configured")
    try:
        if dry_run or config.connection is None:
            return await renderer.render(chart, values)
        return await renderer.render_with_client(
            chart, values, config.connection.to_rest_config()
        )
    except RenderError:
        raise
    except Exception as err:
        raise RenderError(f"failed to render chart {chart.name}: {err}") from err


def _reparse_filtered(output: str, chart: Chart, include_crds: bool) -> list[Manifest]:
    """Parse the post-rendered buffer into the resources to apply.

    Custom resource definitions emitted from the `crds/` directory are
    created separately by the install, so they are left out.
    """
    crd_files = {crd.filename for crd in chart.crd_objects()} if include_crds else set()
    try:
        manifests = parse_manifests(output)
    except ManifestParseError as err:
        raise RenderError(f"{POST_RENDER_ERROR}: {err}", manifest=output) from err
    return sort_manifests_by_kind(
        [m for m in manifests if m.name not in crd_files], INSTALL_ORDER
    )


async def render_resources(
    config: "Configuration",
    chart: Chart,
    values: dict[str, Any],
    options: RenderOptions,
) -> RenderResult:
    """Render the chart and assemble the resources to apply.

    The `values` are the top level render values built by `to_render_values`.
    No cluster state is modified. A RenderError carries a dump of every
    rendered file when the output could not be split into resources.
    """
    caps = await config.get_capabilities()
    if (constraint := chart.metadata.kube_version) and not is_compatible_range(
        constraint, caps.kube_version.version
    ):
        raise IncompatibleVersionError(
            f"chart requires kubeVersion: {constraint} which is incompatible "
            f"with Kubernetes {caps.kube_version.version}"
        )

    files = await _render_files(config, chart, values, options.dry_run)
    notes, files = extract_notes(files, chart.name, options.sub_notes)

    try:
        hooks, manifests = sort_manifests(files, caps.api_versions, INSTALL_ORDER)
    except ManifestParseError as err:
        raise RenderError(str(err), manifest=_dump_files(files)) from err

    if options.label_stamp is not None:
        manifests = stamp_manifests(manifests, options.label_stamp)

    buffer: list[str] = []
    writer = _FileWriter()
    output_dir = options.output_dir
    if options.include_crds:
        for crd in chart.crd_objects():
            if output_dir is None:
                buffer.append(SOURCE_TEMPLATE.format(name=crd.filename, content=crd.file.data))
            else:
                await writer.write(output_dir / crd.filename, crd.filename, crd.file.data)

    for manifest in manifests:
        if output_dir is None:
            buffer.append(SOURCE_TEMPLATE.format(name=manifest.name, content=manifest.content))
            continue
        base = output_dir
        if options.use_release_name:
            base = output_dir / options.release_name
        await writer.write(base / manifest.name, manifest.name, manifest.content)

    output = "".join(buffer)
    if options.post_renderer is not None and output_dir is None:
        try:
            output = await options.post_renderer.run(output)
        except Exception as err:
            raise PostRenderError(POST_RENDER_ERROR) from err
        manifests = _reparse_filtered(output, chart, options.include_crds)

    return RenderResult(hooks=hooks, manifests=manifests, manifest=output, notes=notes)
