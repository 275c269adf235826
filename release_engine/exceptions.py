"""Exceptions related to release-engine."""

__all__ = [
    "ReleaseException",
    "InputException",
    "CommandException",
    "ConfigurationError",
    "IncompatibleVersionError",
    "RenderError",
    "ManifestParseError",
    "DiscoveryException",
    "DiscoveryDegradedError",
    "PendingOperationError",
    "StorageException",
    "StorageWriteError",
    "PostRenderError",
    "ReleaseNotFoundError",
    "ReleaseExistsError",
    "InvalidKeyError",
    "NoDeployedReleasesError",
    "RevisionConflictError",
    "ObjectNotFoundError",
    "ObjectExistsError",
    "HookException",
]


class ReleaseException(Exception):
    """Generic base exception used for this library."""


class InputException(ReleaseException):
    """Raised when the input release names, revisions or values are invalid."""


class CommandException(ReleaseException):
    """Raised when there is a failure running a subcommand."""


class ConfigurationError(ReleaseException):
    """Raised when the configuration selects an unknown storage driver.

    There is no safe fallback for this error and it is not expected to be
    handled by anything other than the process entry point.
    """


class IncompatibleVersionError(ReleaseException):
    """Raised when a chart kubeVersion constraint is not met by the cluster."""


class RenderError(ReleaseException):
    """Raised when rendered templates could not be processed.

    The `manifest` attribute holds a best effort dump of every non-empty
    rendered file to help debug the failure.
    """

    def __init__(self, message: str, manifest: str = "") -> None:
        super().__init__(message)
        self.manifest = manifest


class ManifestParseError(ReleaseException):
    """Raised when a rendered document is not a valid resource."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"YAML parse error on {path}: {message}")
        self.path = path


class DiscoveryException(ReleaseException):
    """Raised when the cluster capabilities could not be discovered."""


class DiscoveryDegradedError(DiscoveryException):
    """Raised by a discovery client when an API service is registered but broken.

    The partially discovered inventory is attached so callers may continue.
    """

    def __init__(
        self,
        failed: dict[str, str],
        groups: list | None = None,
        resources: list | None = None,
    ) -> None:
        details = ", ".join(f"{gv}: {err}" for gv, err in sorted(failed.items()))
        super().__init__(f"unable to retrieve the complete list of server APIs: {details}")
        self.failed = failed
        self.groups = groups or []
        self.resources = resources or []


class PendingOperationError(ReleaseException):
    """Raised when another operation is in progress for the release name."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"another operation (install/upgrade/rollback) is in progress for release {name}"
        )
        self.name = name


class StorageException(ReleaseException):
    """Base exception for release storage drivers."""


class StorageWriteError(StorageException):
    """Raised when a release record could not be persisted."""


class ReleaseNotFoundError(StorageException):
    """Raised when a release record does not exist."""


class ReleaseExistsError(StorageException):
    """Raised when creating a release record that already exists."""


class InvalidKeyError(StorageException):
    """Raised when a storage key is malformed."""


class NoDeployedReleasesError(StorageException):
    """Raised when a release has no deployed revision."""


class RevisionConflictError(StorageException):
    """Raised when a revision at or below the highest assigned one is reused."""


class PostRenderError(ReleaseException):
    """Raised when the post-render filter fails."""


class ObjectNotFoundError(ReleaseException):
    """Raised when a cluster object is not found."""


class ObjectExistsError(ReleaseException):
    """Raised when a cluster object already exists."""


class HookException(ReleaseException):
    """Raised when a lifecycle hook fails."""

    def __init__(self, hook_name: str, event: str, message: str | None) -> None:
        super().__init__(
            f"{event} hook {hook_name} failed: {message or 'Unknown error'}"
        )
        self.hook_name = hook_name
        self.event = event
