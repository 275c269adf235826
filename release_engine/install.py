"""Installation of a chart as a new release.

An install renders the chart, stores the new revision as `pending-install`
and only then touches the cluster: custom resource definitions first, then
the `pre-install` hooks, the resources in install order and the
`post-install` hooks. The revision is marked `deployed` on success or
`failed` otherwise.

```python
from release_engine.install import Install

rls = await Install(config, release_name="podinfo", namespace="podinfo").run(
    chart, {"replicaCount": 2}
)
```
"""

import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

from .action import Configuration
from .chart import Chart, ReleaseOptions, to_render_values
from .exceptions import InputException, ReleaseException, ReleaseNotFoundError
from .hooks import DEFAULT_HOOK_TIMEOUT, exec_hooks
from .labels import LabelStamp
from .manifest import Manifest, parse_head, split_manifests
from .release import HookEvent, Info, Release, Status, validate_release_name
from .render import PostRenderer, RenderOptions

__all__ = [
    "Install",
    "crd_manifests",
]

_LOGGER = logging.getLogger(__name__)


def crd_manifests(chart: Chart) -> list[Manifest]:
    """Return the custom resource definitions of the chart as manifests."""
    manifests = []
    for crd in chart.crd_objects():
        for doc in split_manifests(crd.file.data):
            if (head := parse_head(crd.filename, doc)) is not None:
                manifests.append(Manifest(name=crd.filename, content=doc, head=head))
    return manifests


@dataclass
class Install:
    """Installs a chart as a new release."""

    config: Configuration
    """The session configuration."""

    release_name: str
    """The name of the new release."""

    namespace: str = "default"
    """The namespace to install the release into."""

    dry_run: bool = False
    """Render the release without storing or applying it."""

    disable_hooks: bool = False
    """Skip the install hooks."""

    replace: bool = False
    """Reuse the name of a release that was uninstalled or failed."""

    skip_crds: bool = False
    """Do not create the custom resource definitions of the chart."""

    include_crds: bool = False
    """Include the custom resource definitions in the rendered manifest."""

    sub_notes: bool = False
    """Include the notes of sub-charts."""

    output_dir: Path | None = None
    """Write the rendered manifests under this directory, requires `dry_run`."""

    use_release_name: bool = False
    """Nest the written manifests under a directory named after the release."""

    post_renderer: PostRenderer | None = None
    """Filter applied to the rendered manifest."""

    label_releases: bool = False
    """Stamp the tracking label with the release name onto the resources."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels stored with the release record."""

    description: str = ""
    """Custom description of the release."""

    timeout: float = DEFAULT_HOOK_TIMEOUT
    """Seconds to wait for each hook."""

    def _check_name_available(self) -> None:
        try:
            last = self.config.storage.last(self.release_name)
        except ReleaseNotFoundError:
            return
        if self.replace and last.status in (Status.UNINSTALLED, Status.FAILED):
            return
        raise ReleaseException(
            f"cannot re-use a name that is still in use: {self.release_name}"
        )

    async def run(self, chart: Chart, values: dict[str, Any] | None = None) -> Release:
        """Install the chart, returning the new release."""
        validate_release_name(self.release_name)
        if self.output_dir is not None and not self.dry_run:
            # Written manifests are for inspection and are never applied
            raise InputException("output_dir can only be used with dry_run")
        values = values or {}
        if not self.dry_run:
            self.config.storage.ensure_no_pending(self.release_name)
            self._check_name_available()

        caps = await self.config.get_capabilities()
        revision = 1 if self.dry_run else self.config.storage.next_revision(self.release_name)
        render_values = to_render_values(
            chart,
            values,
            ReleaseOptions(
                name=self.release_name,
                namespace=self.namespace,
                revision=revision,
                is_install=True,
            ),
            caps,
        )
        now = self.config.now()
        rls = Release(
            name=self.release_name,
            namespace=self.namespace,
            version=revision,
            info=Info(first_deployed=now, last_deployed=now),
            chart=chart.metadata,
            config=values,
            labels=dict(self.labels),
        )
        result = await self.config.render_resources(
            chart,
            render_values,
            RenderOptions(
                release_name=self.release_name,
                output_dir=self.output_dir,
                use_release_name=self.use_release_name,
                sub_notes=self.sub_notes,
                include_crds=self.include_crds,
                post_renderer=self.post_renderer,
                dry_run=self.dry_run,
                label_stamp=LabelStamp(self.release_name) if self.label_releases else None,
            ),
        )
        rls.manifest = result.manifest
        rls.hooks = result.hooks
        rls.info.notes = result.notes

        if self.dry_run:
            rls.set_status(Status.PENDING_INSTALL, "Dry run complete")
            return rls

        crds = [] if self.skip_crds else crd_manifests(chart)
        rls.set_status(Status.PENDING_INSTALL, "Initial install underway")
        self.config.storage.create(rls)

        try:
            if crds:
                _LOGGER.debug("Installing %d custom resource definitions", len(crds))
                await self.config.kube.create(crds)
                # New kinds are now served by the cluster
                self.config.capabilities.invalidate()
            if not self.disable_hooks:
                await exec_hooks(self.config, rls, HookEvent.PRE_INSTALL, self.timeout)
            await self.config.kube.create(result.manifests)
            if not self.disable_hooks:
                await exec_hooks(self.config, rls, HookEvent.POST_INSTALL, self.timeout)
        except (Exception, asyncio.CancelledError) as err:
            _LOGGER.error("Install of %s failed: %s", rls, err)
            rls.set_status(Status.FAILED, f"Release {self.release_name!r} failed: {err}")
            self.config.record_release(rls)
            raise

        self.config.supersede_deployed(rls)
        rls.set_status(Status.DEPLOYED, self.description or "Install complete")
        self.config.record_release(rls)
        return rls
