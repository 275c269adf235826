"""Release record backends storing records as cluster objects.

Each revision is stored in its own `Secret` or `ConfigMap`, named by its
storage key, holding the encoded record under `data.release` and labelled
with the release name, owner, status and revision so it can be queried
without decoding.

The highest revision assigned to a release name is kept in a separate
object, so that revisions are not reused after their records are deleted.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import Any

from release_engine.exceptions import (
    ObjectExistsError,
    ObjectNotFoundError,
    ReleaseException,
    ReleaseExistsError,
    ReleaseNotFoundError,
    StorageException,
    StorageWriteError,
)
from release_engine.kube import ObjectClient
from release_engine.release import Release

from .driver import KEY_PREFIX, Driver, parse_key
from .records import (
    OWNER,
    decode_release,
    encode_release,
    record_labels,
    user_labels,
)

__all__ = [
    "ConfigMapsDriver",
    "SecretsDriver",
]

_LOGGER = logging.getLogger(__name__)

RELEASE_DATA_KEY = "release"
REVISION_DATA_KEY = "revision"
REVISION_OWNER = f"{OWNER}-revisions"
SECRET_TYPE = "release-engine.io/release.v1"


def _revision_key(name: str) -> str:
    return f"{KEY_PREFIX}.{name}.revision"


class _ObjectDriver(Driver):
    """Shared implementation for drivers backed by an ObjectClient."""

    kind: str = ""

    def __init__(self, client: ObjectClient) -> None:
        """Initialize the driver."""
        self._client = client

    def _new_object(self, key: str, labels: dict[str, str], data: dict[str, str]) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": self.kind,
            "metadata": {"name": key, "labels": labels},
            "data": data,
        }

    def _decode(self, obj: dict[str, Any]) -> Release:
        rls = decode_release(obj.get("data", {}).get(RELEASE_DATA_KEY, ""))
        rls.labels = user_labels(obj.get("metadata", {}).get("labels") or {})
        return rls

    def _decode_all(self, objs: list[dict[str, Any]]) -> list[Release]:
        results = []
        for obj in objs:
            try:
                results.append(self._decode(obj))
            except StorageException as err:
                _LOGGER.debug(
                    "%s: skipping undecodable record %s: %s",
                    self.name,
                    obj.get("metadata", {}).get("name"),
                    err,
                )
        return results

    def get(self, key: str) -> Release:
        """Return the record, raising ReleaseNotFoundError if it does not exist."""
        try:
            obj = self._client.get(key)
        except ObjectNotFoundError as err:
            raise ReleaseNotFoundError(f"release: not found: {key}") from err
        return self._decode(obj)

    def list(self, filter: Callable[[Release], bool]) -> list[Release]:
        """Return every record accepted by the filter."""
        records = self._decode_all(self._client.list({"owner": OWNER}))
        return [rls for rls in records if filter(rls)]

    def query(self, labels: dict[str, str]) -> list[Release]:
        """Return the records carrying every label."""
        return self._decode_all(self._client.list({**labels, "owner": OWNER}))

    def create(self, key: str, rls: Release) -> None:
        """Store a new record."""
        obj = self._new_object(key, record_labels(rls), {RELEASE_DATA_KEY: encode_release(rls)})
        try:
            self._client.create(obj)
        except ObjectExistsError as err:
            raise ReleaseExistsError(f"release: already exists: {key}") from err
        except ReleaseException as err:
            raise StorageWriteError(f"create: failed to create {key}: {err}") from err
        name, version = parse_key(key)
        self._raise_high_water(name, version)

    def update(self, key: str, rls: Release) -> None:
        """Replace an existing record."""
        obj = self._new_object(key, record_labels(rls), {RELEASE_DATA_KEY: encode_release(rls)})
        try:
            self._client.update(obj)
        except ObjectNotFoundError as err:
            raise ReleaseNotFoundError(f"release: not found: {key}") from err
        except ReleaseException as err:
            raise StorageWriteError(f"update: failed to update {key}: {err}") from err

    def delete(self, key: str) -> Release:
        """Remove a record, the revision stays reserved."""
        rls = self.get(key)
        try:
            self._client.delete(key)
        except ObjectNotFoundError as err:
            raise ReleaseNotFoundError(f"release: not found: {key}") from err
        return rls

    def _stored_high_water(self, name: str) -> tuple[dict[str, Any] | None, int]:
        try:
            obj = self._client.get(_revision_key(name))
        except ObjectNotFoundError:
            return None, 0
        value = obj.get("data", {}).get(REVISION_DATA_KEY, "0")
        try:
            return obj, int(value)
        except ValueError:
            _LOGGER.warning("%s: ignoring invalid revision mark %r for %s", self.name, value, name)
            return obj, 0

    def _raise_high_water(self, name: str, version: int) -> None:
        existing, current = self._stored_high_water(name)
        if version <= current:
            return
        obj = self._new_object(
            _revision_key(name),
            {"name": name, "owner": REVISION_OWNER},
            {REVISION_DATA_KEY: str(version)},
        )
        try:
            if existing is None:
                self._client.create(obj)
            else:
                self._client.update(obj)
        except ReleaseException as err:
            raise StorageWriteError(f"failed to record revision {version} of {name}: {err}") from err

    def high_water(self, name: str) -> int:
        """Return the highest revision ever stored for the release name."""
        _, stored = self._stored_high_water(name)
        return max(stored, super().high_water(name))


class SecretsDriver(_ObjectDriver):
    """Stores release records as Secrets."""

    name = "Secret"
    kind = "Secret"

    def _new_object(self, key: str, labels: dict[str, str], data: dict[str, str]) -> dict[str, Any]:
        return {**super()._new_object(key, labels, data), "type": SECRET_TYPE}


class ConfigMapsDriver(_ObjectDriver):
    """Stores release records as ConfigMaps."""

    name = "ConfigMap"
    kind = "ConfigMap"
