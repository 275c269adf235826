"""Removal of a release from the cluster.

Resources are deleted in the reverse of the install order. Resources
annotated with `helm.sh/resource-policy: keep` are left in place. The history
of the release is purged unless `keep_history` is set, in which case the
latest revision is kept with the `uninstalled` status and the name can later
be reused with `Install(replace=True)`.
"""

import asyncio
from dataclasses import dataclass, field
import logging

from .action import Configuration
from .exceptions import ReleaseException, ReleaseNotFoundError
from .hooks import DEFAULT_HOOK_TIMEOUT, exec_hooks
from .manifest import KEEP_POLICY, RESOURCE_POLICY_ANNOTATION, Manifest, parse_manifests
from .release import HookEvent, Release, Status, validate_release_name
from .sorter import UNINSTALL_ORDER, sort_manifests_by_kind

__all__ = [
    "Uninstall",
    "UninstallResult",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class UninstallResult:
    """The outcome of an uninstall."""

    release: Release
    """The final state of the uninstalled revision."""

    kept: list[Manifest] = field(default_factory=list)
    """Resources left in the cluster by their resource policy."""

    @property
    def info(self) -> str:
        """A message listing the resources that were kept."""
        if not self.kept:
            return ""
        lines = ["These resources were kept due to the resource policy:"]
        lines.extend(f"[{m.head.kind}] {m.head.name}" for m in self.kept)
        return "\n".join(lines)


@dataclass
class Uninstall:
    """Uninstalls a release."""

    config: Configuration
    """The session configuration."""

    dry_run: bool = False
    """Report what would be uninstalled without changing anything."""

    disable_hooks: bool = False
    """Skip the delete hooks."""

    keep_history: bool = False
    """Keep the release history, marking the latest revision uninstalled."""

    description: str = ""
    """Custom description of the uninstalled revision."""

    timeout: float = DEFAULT_HOOK_TIMEOUT
    """Seconds to wait for each hook."""

    def _purge(self, name: str) -> None:
        for rls in self.config.storage.history(name):
            try:
                self.config.storage.delete(rls.name, rls.version)
            except Exception as err:
                self.config.log.warning("warning: Failed to purge release %s: %s", rls, err)

    async def run(self, name: str) -> UninstallResult:
        """Uninstall the release."""
        validate_release_name(name)
        if self.dry_run:
            return UninstallResult(release=self.config.storage.deployed(name))

        if not (history := self.config.storage.history(name)):
            raise ReleaseNotFoundError(f"{name}: release: not found")
        rls = history[-1]
        if rls.status == Status.UNINSTALLED:
            if self.keep_history:
                raise ReleaseException(f"the release named {name!r} is already deleted")
            _LOGGER.debug("purging uninstalled release %s", name)
            self._purge(name)
            return UninstallResult(release=rls)

        rls.set_status(Status.UNINSTALLING, "Deletion in progress (or silently failed)")
        rls.info.deleted = self.config.now()
        self.config.storage.update(rls)

        manifests: list[Manifest] = []
        kept: list[Manifest] = []
        for manifest in sort_manifests_by_kind(parse_manifests(rls.manifest), UNINSTALL_ORDER):
            if manifest.head.annotations.get(RESOURCE_POLICY_ANNOTATION) == KEEP_POLICY:
                kept.append(manifest)
            else:
                manifests.append(manifest)

        try:
            if not self.disable_hooks:
                await exec_hooks(self.config, rls, HookEvent.PRE_DELETE, self.timeout)
            await self.config.kube.delete(manifests)
            if not self.disable_hooks:
                await exec_hooks(self.config, rls, HookEvent.POST_DELETE, self.timeout)
        except (Exception, asyncio.CancelledError) as err:
            _LOGGER.error("Uninstall of %s failed: %s", rls, err)
            rls.set_status(Status.FAILED, f"Uninstallation failed: {err}")
            self.config.record_release(rls)
            raise

        rls.set_status(Status.UNINSTALLED, self.description or "Uninstallation complete")
        if self.keep_history:
            self.config.record_release(rls)
        else:
            self._purge(name)
        return UninstallResult(release=rls, kept=kept)
