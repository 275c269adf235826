"""Release history on top of a storage driver.

`Storage` adds the release semantics to the plain key/value contract of a
`Driver`:

- revisions are assigned strictly increasing per release name and are never
  reused, even after the record of a revision has been deleted
- `ensure_no_pending` refuses to start an operation while the latest
  revision of a release is still in a `pending-*` status
- the history of a release can be capped with `max_history`

The pending-operation guard is a read of the latest record followed by a
later write. Two processes racing on the same release name may both pass the
guard, so it is a best effort protection rather than a lock.
"""

import logging

from release_engine.exceptions import (
    NoDeployedReleasesError,
    PendingOperationError,
    ReleaseNotFoundError,
    RevisionConflictError,
)
from release_engine.release import Release, Status

from .driver import Driver, make_key

__all__ = [
    "Storage",
]

_LOGGER = logging.getLogger(__name__)


def _by_revision(releases: list[Release]) -> list[Release]:
    return sorted(releases, key=lambda rls: rls.version)


class Storage:
    """Release history backed by a driver."""

    def __init__(self, driver: Driver, max_history: int = 0) -> None:
        """Initialize Storage.

        A `max_history` of zero keeps every revision.
        """
        self.driver = driver
        self.max_history = max_history
        self._assigned: dict[str, int] = {}

    def get(self, name: str, version: int) -> Release:
        """Return a revision of a release."""
        _LOGGER.debug("getting release %s", make_key(name, version))
        return self.driver.get(make_key(name, version))

    def next_revision(self, name: str) -> int:
        """Return the revision the next record of the release must use."""
        return max(self._assigned.get(name, 0), self.driver.high_water(name)) + 1

    def create(self, rls: Release) -> None:
        """Store a new revision of a release.

        A record without a revision is assigned the next one. A revision at
        or below the highest one already assigned raises RevisionConflictError.
        """
        if rls.version == 0:
            rls.version = self.next_revision(rls.name)
        elif rls.version < self.next_revision(rls.name):
            raise RevisionConflictError(
                f"revision {rls.version} of release {rls.name} was already assigned"
            )
        _LOGGER.debug("creating release %s", make_key(rls.name, rls.version))
        if self.max_history > 0:
            # Make room for the new revision
            self._remove_least_recent(rls.name, self.max_history - 1)
        self.driver.create(make_key(rls.name, rls.version), rls)
        self._assigned[rls.name] = max(self._assigned.get(rls.name, 0), rls.version)

    def update(self, rls: Release) -> None:
        """Replace an existing revision of a release."""
        _LOGGER.debug("updating release %s", make_key(rls.name, rls.version))
        self.driver.update(make_key(rls.name, rls.version), rls)

    def upsert(self, rls: Release) -> None:
        """Replace the revision of a release, storing it if it does not exist."""
        key = make_key(rls.name, rls.version)
        try:
            self.driver.update(key, rls)
        except ReleaseNotFoundError:
            _LOGGER.debug("release %s not found, creating it", key)
            self.driver.create(key, rls)
            self._assigned[rls.name] = max(self._assigned.get(rls.name, 0), rls.version)

    def delete(self, name: str, version: int) -> Release:
        """Remove a revision of a release, its revision number stays reserved."""
        _LOGGER.debug("deleting release %s", make_key(name, version))
        return self.driver.delete(make_key(name, version))

    def list_releases(self) -> list[Release]:
        """Return every release revision."""
        return self.driver.list(lambda _: True)

    def list_uninstalled(self) -> list[Release]:
        """Return the uninstalled release revisions."""
        return self.driver.list(lambda rls: rls.status == Status.UNINSTALLED)

    def list_deployed(self) -> list[Release]:
        """Return the deployed release revisions."""
        return self.driver.list(lambda rls: rls.status == Status.DEPLOYED)

    def deployed_all(self, name: str) -> list[Release]:
        """Return the deployed revisions of a release."""
        return self.driver.query({"name": name, "status": str(Status.DEPLOYED)})

    def deployed(self, name: str) -> Release:
        """Return the latest deployed revision of a release."""
        if not (releases := self.deployed_all(name)):
            raise NoDeployedReleasesError(f"{name} has no deployed releases")
        return _by_revision(releases)[-1]

    def history(self, name: str) -> list[Release]:
        """Return every stored revision of a release, oldest first."""
        _LOGGER.debug("getting release history for %s", name)
        return _by_revision(self.driver.query({"name": name}))

    def last(self, name: str) -> Release:
        """Return the highest stored revision of a release."""
        if not (history := self.history(name)):
            raise ReleaseNotFoundError(f"release: not found: {name}")
        return history[-1]

    def ensure_no_pending(self, name: str) -> None:
        """Raise PendingOperationError if an operation is in flight for the release."""
        try:
            last = self.last(name)
        except ReleaseNotFoundError:
            return
        if last.status.is_pending:
            raise PendingOperationError(name)

    def _remove_least_recent(self, name: str, maximum: int) -> None:
        """Delete the oldest revisions beyond `maximum`, keeping the latest deployed one."""
        history = self.history(name)
        if len(history) <= maximum:
            return
        deployed = [rls.version for rls in history if rls.status == Status.DEPLOYED]
        keep = {deployed[-1]} if deployed else set()
        excess = len(history) - maximum
        for rls in history:
            if excess <= 0:
                break
            if rls.version in keep:
                continue
            self.delete(rls.name, rls.version)
            excess -= 1
        _LOGGER.debug("pruned history of %s to %d revisions", name, maximum)
