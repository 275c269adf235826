"""Representation of a release and its revision history records.

A `Release` is one revision of a named deployment of a chart. Its `Status`
moves through a small state machine:

- `pending-install`, `pending-upgrade` and `pending-rollback` while an
  operation is in flight
- `deployed` once applied, with at most one deployed revision per name
- `superseded` when a newer revision is deployed
- `failed` when the operation applying it failed
- `uninstalling` and then `uninstalled` when removed
"""

from dataclasses import dataclass, field
import datetime
from enum import StrEnum
import re
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .chart import ChartMetadata
from .exceptions import InputException

__all__ = [
    "Hook",
    "HookDeletePolicy",
    "HookEvent",
    "HookExecution",
    "HookPhase",
    "Info",
    "Release",
    "Status",
    "validate_release_name",
]

MAX_RELEASE_NAME_LEN = 53

_RELEASE_NAME_RE = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)


class Status(StrEnum):
    """The status of a release revision."""

    UNKNOWN = "unknown"
    DEPLOYED = "deployed"
    UNINSTALLED = "uninstalled"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    UNINSTALLING = "uninstalling"
    PENDING_INSTALL = "pending-install"
    PENDING_UPGRADE = "pending-upgrade"
    PENDING_ROLLBACK = "pending-rollback"

    @property
    def is_pending(self) -> bool:
        """Return True if an operation is in flight for the release."""
        match self:
            case Status.PENDING_INSTALL | Status.PENDING_UPGRADE | Status.PENDING_ROLLBACK:
                return True
            case (
                Status.UNKNOWN
                | Status.DEPLOYED
                | Status.UNINSTALLED
                | Status.SUPERSEDED
                | Status.FAILED
                | Status.UNINSTALLING
            ):
                return False


class HookEvent(StrEnum):
    """Lifecycle events a hook may be bound to."""

    PRE_INSTALL = "pre-install"
    POST_INSTALL = "post-install"
    PRE_DELETE = "pre-delete"
    POST_DELETE = "post-delete"
    PRE_UPGRADE = "pre-upgrade"
    POST_UPGRADE = "post-upgrade"
    PRE_ROLLBACK = "pre-rollback"
    POST_ROLLBACK = "post-rollback"
    TEST = "test"

    @classmethod
    def parse(cls, value: str) -> "HookEvent | None":
        """Parse an annotation value, returning None for unknown events."""
        value = value.strip().lower()
        if value == "test-success":
            return cls.TEST
        try:
            return cls(value)
        except ValueError:
            return None


class HookDeletePolicy(StrEnum):
    """When the resources created by a hook are deleted."""

    HOOK_SUCCEEDED = "hook-succeeded"
    HOOK_FAILED = "hook-failed"
    BEFORE_HOOK_CREATION = "before-hook-creation"


class HookPhase(StrEnum):
    """The outcome of the most recent hook execution."""

    UNKNOWN = "Unknown"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class HookExecution(DataClassDictMixin):
    """Details of the most recent run of a hook."""

    started_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None
    phase: HookPhase = HookPhase.UNKNOWN

    class Config(BaseConfig):
        omit_none = True


@dataclass
class Hook(DataClassDictMixin):
    """A manifest bound to lifecycle events instead of installed with the release."""

    name: str
    """The `metadata.name` of the resource."""

    kind: str
    """The kind of the resource."""

    path: str
    """The chart relative path of the template that produced the hook."""

    manifest: str
    """The rendered resource document."""

    events: list[HookEvent] = field(default_factory=list)
    """The events that trigger the hook."""

    weight: int = 0
    """Hooks with lower weights run first."""

    delete_policies: list[HookDeletePolicy] = field(default_factory=list)
    """When to delete the hook resources."""

    last_run: HookExecution = field(default_factory=HookExecution)
    """Details of the most recent execution."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class Info(DataClassDictMixin):
    """Information about a release revision."""

    status: Status = Status.UNKNOWN
    first_deployed: datetime.datetime | None = None
    last_deployed: datetime.datetime | None = None
    deleted: datetime.datetime | None = None
    description: str = ""
    notes: str = ""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class Release(DataClassDictMixin):
    """A revision of a named deployment of a chart."""

    name: str
    """The release name, stable across revisions."""

    namespace: str
    """The namespace the release is installed into."""

    version: int = 0
    """The revision number, zero until assigned by the storage."""

    info: Info = field(default_factory=Info)
    """Status and timestamps of the revision."""

    chart: ChartMetadata | None = None
    """The chart that was released."""

    config: dict[str, Any] = field(default_factory=dict)
    """The values supplied by the user for this revision."""

    manifest: str = ""
    """The rendered resources of the revision."""

    hooks: list[Hook] = field(default_factory=list)
    """The hooks of the revision, sorted by weight."""

    labels: dict[str, str] = field(default_factory=dict)
    """Additional labels stored with the record."""

    class Config(BaseConfig):
        omit_none = True

    @property
    def status(self) -> Status:
        """The status of the revision."""
        return self.info.status

    def set_status(self, status: Status, description: str) -> None:
        """Update the status and its human readable description."""
        self.info.status = status
        self.info.description = description

    def __str__(self) -> str:
        return f"{self.name}.v{self.version}"


def validate_release_name(name: str) -> None:
    """Raise an InputException if the name is not a valid release name."""
    if not name:
        raise InputException("no release name provided")
    if len(name) > MAX_RELEASE_NAME_LEN:
        raise InputException(
            f"release name {name!r} exceeds max length of {MAX_RELEASE_NAME_LEN}"
        )
    if not _RELEASE_NAME_RE.match(name):
        raise InputException(
            f"release name {name!r} must be a lowercase DNS-1123 subdomain"
        )
