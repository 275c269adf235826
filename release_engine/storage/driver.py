"""Interface implemented by each release record backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import StrEnum
import logging

from release_engine.exceptions import ConfigurationError, InvalidKeyError
from release_engine.release import Release

__all__ = [
    "Driver",
    "DriverKind",
    "make_key",
    "parse_key",
]

_LOGGER = logging.getLogger(__name__)

KEY_PREFIX = "release-engine.v1"


class DriverKind(StrEnum):
    """The available storage backends."""

    SECRETS = "secrets"
    CONFIGMAPS = "configmaps"
    MEMORY = "memory"
    SQL = "sql"

    @classmethod
    def parse(cls, value: str | None) -> "DriverKind":
        """Parse a backend name, raising ConfigurationError if it is unknown.

        An empty value selects the secrets backend.
        """
        match (value or "").strip().lower():
            case "" | "secret" | "secrets":
                return cls.SECRETS
            case "configmap" | "configmaps":
                return cls.CONFIGMAPS
            case "memory":
                return cls.MEMORY
            case "sql":
                return cls.SQL
        raise ConfigurationError(f"Unknown driver {value!r}")


def make_key(name: str, version: int) -> str:
    """Return the storage key of a release revision."""
    return f"{KEY_PREFIX}.{name}.v{version}"


def parse_key(key: str) -> tuple[str, int]:
    """Return the release name and revision of a storage key."""
    prefix = f"{KEY_PREFIX}."
    if not key.startswith(prefix):
        raise InvalidKeyError(f"invalid release key: {key}")
    name, sep, version = key[len(prefix) :].rpartition(".v")
    if not sep or not name or not version.isdigit():
        raise InvalidKeyError(f"invalid release key: {key}")
    return name, int(version)


class Driver(ABC):
    """A backend persisting release records keyed by `make_key`."""

    name: str = ""

    @abstractmethod
    def get(self, key: str) -> Release:
        """Return the record, raising ReleaseNotFoundError if it does not exist."""

    @abstractmethod
    def list(self, filter: Callable[[Release], bool]) -> list[Release]:
        """Return every record accepted by the filter."""

    @abstractmethod
    def query(self, labels: dict[str, str]) -> list[Release]:
        """Return the records carrying every label, possibly none."""

    @abstractmethod
    def create(self, key: str, rls: Release) -> None:
        """Persist a new record, raising ReleaseExistsError if it exists."""

    @abstractmethod
    def update(self, key: str, rls: Release) -> None:
        """Replace a record, raising ReleaseNotFoundError if it does not exist."""

    @abstractmethod
    def delete(self, key: str) -> Release:
        """Remove and return a record, raising ReleaseNotFoundError if it does not exist."""

    def high_water(self, name: str) -> int:
        """Return the highest revision ever stored for the release name.

        Backends that remember deleted revisions override this, the default
        only considers the records currently held.
        """
        return max((rls.version for rls in self.query({"name": name})), default=0)
