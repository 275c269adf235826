"""Rollback of a release to a previous revision.

A rollback never rewrites history. It stores a new revision holding the
chart, values and manifest of the earlier revision, and applies it.
"""

import asyncio
from dataclasses import dataclass
import copy
import logging

from .action import Configuration
from .exceptions import InputException
from .hooks import DEFAULT_HOOK_TIMEOUT, exec_hooks
from .manifest import parse_manifests
from .release import HookEvent, Info, Release, Status, validate_release_name

__all__ = [
    "Rollback",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class Rollback:
    """Rolls a release back to a previous revision."""

    config: Configuration
    """The session configuration."""

    version: int = 0
    """The revision to roll back to, zero for the one before the latest."""

    dry_run: bool = False
    """Prepare the rollback without storing or applying it."""

    disable_hooks: bool = False
    """Skip the rollback hooks."""

    timeout: float = DEFAULT_HOOK_TIMEOUT
    """Seconds to wait for each hook."""

    async def run(self, name: str) -> Release:
        """Roll back the release, returning the new revision."""
        validate_release_name(name)
        if self.version < 0:
            raise InputException(f"invalid release revision {self.version}")
        if not self.dry_run:
            self.config.storage.ensure_no_pending(name)

        current = self.config.storage.last(name)
        previous_version = self.version or current.version - 1
        if previous_version < 1:
            raise InputException(f"release {name} has no previous revision")
        _LOGGER.debug("rolling back %s (current: v%d, target: v%d)", name, current.version, previous_version)
        previous = self.config.storage.get(name, previous_version)

        if self.dry_run:
            revision = current.version + 1
        else:
            revision = self.config.storage.next_revision(name)
        target = Release(
            name=name,
            namespace=previous.namespace,
            version=revision,
            info=Info(
                status=Status.PENDING_ROLLBACK,
                first_deployed=current.info.first_deployed,
                last_deployed=self.config.now(),
                description=f"Rollback to {previous_version}",
                notes=previous.info.notes,
            ),
            chart=previous.chart,
            config=copy.deepcopy(previous.config),
            manifest=previous.manifest,
            hooks=copy.deepcopy(previous.hooks),
            labels=dict(previous.labels),
        )
        if self.dry_run:
            return target

        original = parse_manifests(current.manifest)
        self.config.storage.create(target)

        try:
            if not self.disable_hooks:
                await exec_hooks(self.config, target, HookEvent.PRE_ROLLBACK, self.timeout)
            await self.config.kube.update(original, parse_manifests(target.manifest))
            if not self.disable_hooks:
                await exec_hooks(self.config, target, HookEvent.POST_ROLLBACK, self.timeout)
        except (Exception, asyncio.CancelledError) as err:
            _LOGGER.error("Rollback of %s failed: %s", target, err)
            target.set_status(Status.FAILED, f"Rollback {name!r} failed: {err}")
            self.config.record_release(target)
            raise

        self.config.supersede_deployed(target)
        target.set_status(Status.DEPLOYED, f"Rollback to {previous_version}")
        self.config.record_release(target)
        return target
