"""Upgrade of an existing release to a new chart or new values."""

import asyncio
from dataclasses import dataclass
import logging
from typing import Any

from .action import Configuration
from .chart import Chart, ReleaseOptions, coalesce_values, to_render_values
from .exceptions import NoDeployedReleasesError
from .hooks import DEFAULT_HOOK_TIMEOUT, exec_hooks
from .labels import LabelStamp
from .manifest import parse_manifests
from .release import HookEvent, Info, Release, Status, validate_release_name
from .render import PostRenderer, RenderOptions

__all__ = [
    "Upgrade",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class Upgrade:
    """Upgrades a release, keeping its history."""

    config: Configuration
    """The session configuration."""

    namespace: str = "default"
    """The namespace of the release."""

    dry_run: bool = False
    """Render the upgrade without storing or applying it."""

    disable_hooks: bool = False
    """Skip the upgrade hooks."""

    reuse_values: bool = False
    """Merge the new values over the values of the deployed revision."""

    sub_notes: bool = False
    """Include the notes of sub-charts."""

    post_renderer: PostRenderer | None = None
    """Filter applied to the rendered manifest."""

    label_releases: bool = False
    """Stamp the tracking label with the release name onto the resources."""

    description: str = ""
    """Custom description of the release."""

    timeout: float = DEFAULT_HOOK_TIMEOUT
    """Seconds to wait for each hook."""

    def _current(self, name: str) -> Release:
        """Return the revision the upgrade starts from."""
        last = self.config.storage.last(name)
        try:
            return self.config.storage.deployed(name)
        except NoDeployedReleasesError:
            # A release whose only revisions failed can still be upgraded
            if last.status == Status.FAILED:
                return last
            raise

    async def run(
        self, name: str, chart: Chart, values: dict[str, Any] | None = None
    ) -> Release:
        """Upgrade the release, returning the new revision."""
        validate_release_name(name)
        if not self.dry_run:
            self.config.storage.ensure_no_pending(name)
        current = self._current(name)

        values = values or {}
        if self.reuse_values:
            values = coalesce_values(Chart(metadata=chart.metadata, values=current.config), values)

        caps = await self.config.get_capabilities()
        if self.dry_run:
            revision = self.config.storage.last(name).version + 1
        else:
            revision = self.config.storage.next_revision(name)
        render_values = to_render_values(
            chart,
            values,
            ReleaseOptions(
                name=name,
                namespace=self.namespace,
                revision=revision,
                is_upgrade=True,
            ),
            caps,
        )
        target = Release(
            name=name,
            namespace=self.namespace,
            version=revision,
            info=Info(
                first_deployed=current.info.first_deployed,
                last_deployed=self.config.now(),
            ),
            chart=chart.metadata,
            config=values,
            labels=dict(current.labels),
        )
        result = await self.config.render_resources(
            chart,
            render_values,
            RenderOptions(
                release_name=name,
                sub_notes=self.sub_notes,
                post_renderer=self.post_renderer,
                dry_run=self.dry_run,
                label_stamp=LabelStamp(name) if self.label_releases else None,
            ),
        )
        target.manifest = result.manifest
        target.hooks = result.hooks
        target.info.notes = result.notes

        if self.dry_run:
            target.set_status(Status.PENDING_UPGRADE, "Dry run complete")
            return target

        original = parse_manifests(current.manifest)
        target.set_status(Status.PENDING_UPGRADE, "Preparing upgrade")
        self.config.storage.create(target)

        try:
            if not self.disable_hooks:
                await exec_hooks(self.config, target, HookEvent.PRE_UPGRADE, self.timeout)
            await self.config.kube.update(original, result.manifests)
            if not self.disable_hooks:
                await exec_hooks(self.config, target, HookEvent.POST_UPGRADE, self.timeout)
        except (Exception, asyncio.CancelledError) as err:
            _LOGGER.error("Upgrade of %s failed: %s", target, err)
            target.set_status(Status.FAILED, f"Upgrade {name!r} failed: {err}")
            self.config.record_release(target)
            raise

        self.config.supersede_deployed(target)
        target.set_status(Status.DEPLOYED, self.description or "Upgrade complete")
        self.config.record_release(target)
        return target
