"""Tests for the release history storage."""

import base64
import json
import typing

import pytest

from release_engine.exceptions import (
    ConfigurationError,
    InvalidKeyError,
    NoDeployedReleasesError,
    PendingOperationError,
    ReleaseExistsError,
    ReleaseNotFoundError,
    RevisionConflictError,
    StorageException,
)
from release_engine.release import Info, Release, Status
from release_engine.storage import (
    ConfigMapsDriver,
    Driver,
    DriverKind,
    MemoryDriver,
    SQLDriver,
    SecretsDriver,
    Storage,
    make_key,
)
from release_engine.storage.driver import parse_key
from release_engine.storage.records import decode_release, encode_release


def _release(name: str = "demo", status: Status = Status.DEPLOYED, version: int = 0, namespace: str = "default") -> Release:
    return Release(name=name, namespace=namespace, version=version, info=Info(status=status))


@pytest.fixture(name="storage")
def mock_storage() -> Storage:
    """Storage backed by the memory driver."""
    return Storage(MemoryDriver())


def test_revisions_assigned(storage: Storage) -> None:
    """Test revisions are assigned in increasing order."""
    for _ in range(3):
        storage.create(_release(status=Status.SUPERSEDED))
    assert [rls.version for rls in storage.history("demo")] == [1, 2, 3]
    assert storage.last("demo").version == 3
    assert storage.next_revision("demo") == 4


def test_revisions_never_reused(storage: Storage) -> None:
    """Test a deleted revision is never assigned again."""
    for _ in range(3):
        storage.create(_release(status=Status.SUPERSEDED))
    storage.delete("demo", 3)
    storage.delete("demo", 1)
    assert storage.last("demo").version == 2
    assert storage.next_revision("demo") == 4

    rls = _release()
    storage.create(rls)
    assert rls.version == 4

    # A new storage over the same driver knows about deleted revisions
    assert Storage(storage.driver).next_revision("demo") == 5


def test_revision_conflict(storage: Storage) -> None:
    """Test an explicit revision at or below the highest one is rejected."""
    storage.create(_release(version=1))
    storage.create(_release(version=2))
    storage.delete("demo", 2)
    with pytest.raises(RevisionConflictError):
        storage.create(_release(version=2))
    with pytest.raises(RevisionConflictError):
        storage.create(_release(version=1))
    storage.create(_release(version=3))


def test_get(storage: Storage) -> None:
    """Test fetching a revision."""
    storage.create(_release())
    assert storage.get("demo", 1).status == Status.DEPLOYED
    with pytest.raises(ReleaseNotFoundError):
        storage.get("demo", 2)
    with pytest.raises(ReleaseNotFoundError):
        storage.last("other")


def test_records_are_copies(storage: Storage) -> None:
    """Test changes to a record are only stored by an update."""
    rls = _release()
    storage.create(rls)
    rls.set_status(Status.FAILED, "changed")
    assert storage.get("demo", 1).status == Status.DEPLOYED
    storage.update(rls)
    assert storage.get("demo", 1).status == Status.FAILED


def test_update_missing(storage: Storage) -> None:
    """Test updating a revision that was never stored."""
    with pytest.raises(ReleaseNotFoundError):
        storage.update(_release(version=7))


def test_upsert(storage: Storage) -> None:
    """Test upsert creates missing records and replaces existing ones."""
    rls = _release(version=1, status=Status.PENDING_INSTALL)
    storage.upsert(rls)
    rls.set_status(Status.DEPLOYED, "Install complete")
    storage.upsert(rls)
    assert [r.status for r in storage.history("demo")] == [Status.DEPLOYED]
    assert storage.next_revision("demo") == 2


def test_duplicate_create() -> None:
    """Test the driver rejects a duplicate key."""
    driver = MemoryDriver()
    driver.create(make_key("demo", 1), _release(version=1))
    with pytest.raises(ReleaseExistsError):
        driver.create(make_key("demo", 1), _release(version=1))


@pytest.mark.parametrize(
    "status",
    [Status.PENDING_INSTALL, Status.PENDING_UPGRADE, Status.PENDING_ROLLBACK],
)
def test_pending_guard(storage: Storage, status: Status) -> None:
    """Test an operation in flight blocks new operations."""
    storage.create(_release(status=Status.DEPLOYED))
    storage.create(_release(status=status))
    with pytest.raises(PendingOperationError, match="another operation"):
        storage.ensure_no_pending("demo")


@pytest.mark.parametrize(
    "status",
    [Status.DEPLOYED, Status.FAILED, Status.SUPERSEDED, Status.UNINSTALLED],
)
def test_no_pending(storage: Storage, status: Status) -> None:
    """Test settled releases do not block new operations."""
    storage.create(_release(status=status))
    storage.ensure_no_pending("demo")
    storage.ensure_no_pending("never-installed")


def test_deployed(storage: Storage) -> None:
    """Test finding the deployed revision."""
    with pytest.raises(NoDeployedReleasesError):
        storage.deployed("demo")
    storage.create(_release(status=Status.SUPERSEDED))
    storage.create(_release(status=Status.DEPLOYED))
    storage.create(_release(status=Status.FAILED))
    assert storage.deployed("demo").version == 2
    assert [rls.version for rls in storage.deployed_all("demo")] == [2]


def test_list(storage: Storage) -> None:
    """Test listing releases across names."""
    storage.create(_release("a", Status.DEPLOYED))
    storage.create(_release("b", Status.UNINSTALLED))
    storage.create(_release("c", Status.FAILED))
    assert sorted(rls.name for rls in storage.list_releases()) == ["a", "b", "c"]
    assert [rls.name for rls in storage.list_deployed()] == ["a"]
    assert [rls.name for rls in storage.list_uninstalled()] == ["b"]


def test_max_history() -> None:
    """Test the oldest revisions are pruned, keeping the deployed one."""
    storage = Storage(MemoryDriver(), max_history=3)
    storage.create(_release(status=Status.DEPLOYED))
    for _ in range(4):
        storage.create(_release(status=Status.FAILED))
    history = storage.history("demo")
    assert [rls.version for rls in history] == [1, 4, 5]
    assert history[0].status == Status.DEPLOYED


def test_memory_namespaces() -> None:
    """Test the memory driver scopes reads by namespace."""
    driver = MemoryDriver("team-a")
    storage = Storage(driver)
    storage.create(_release("web", namespace="team-a"))
    driver.set_namespace("team-b")
    storage.create(_release("db", namespace="team-b"))
    assert [rls.name for rls in storage.list_releases()] == ["db"]
    with pytest.raises(ReleaseNotFoundError):
        storage.last("web")

    driver.set_namespace("")
    assert sorted(rls.name for rls in storage.list_releases()) == ["db", "web"]
    driver.set_namespace("team-a")
    assert storage.last("web").namespace == "team-a"


def test_keys() -> None:
    """Test building and parsing storage keys."""
    assert make_key("demo.app", 12) == "release-engine.v1.demo.app.v12"
    assert parse_key("release-engine.v1.demo.app.v12") == ("demo.app", 12)
    with pytest.raises(InvalidKeyError):
        parse_key("sh.helm.release.v1.demo.v1")
    with pytest.raises(InvalidKeyError):
        parse_key("release-engine.v1.demo.vX")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, DriverKind.SECRETS),
        ("", DriverKind.SECRETS),
        ("secret", DriverKind.SECRETS),
        ("Secrets", DriverKind.SECRETS),
        ("configmap", DriverKind.CONFIGMAPS),
        ("configmaps", DriverKind.CONFIGMAPS),
        ("memory", DriverKind.MEMORY),
        ("sql", DriverKind.SQL),
    ],
)
def test_driver_kind(value: str | None, expected: DriverKind) -> None:
    """Test parsing the storage driver names."""
    assert DriverKind.parse(value) == expected


def test_unknown_driver_kind() -> None:
    """Test an unknown driver is a configuration error."""
    with pytest.raises(ConfigurationError, match="Unknown driver 'etcd'"):
        DriverKind.parse("etcd")


def test_record_encoding() -> None:
    """Test records are stored as base64 encoded gzipped JSON."""
    rls = _release(version=3)
    rls.config = {"replicaCount": 2}
    rls.labels = {"team": "platform"}
    data = encode_release(rls)
    assert base64.b64decode(data)[:2] == b"\x1f\x8b"
    assert decode_release(data) == rls


def test_uncompressed_record() -> None:
    """Test records stored without compression are decoded."""
    rls = _release(version=1)
    data = base64.b64encode(json.dumps(rls.to_dict()).encode()).decode()
    assert decode_release(data) == rls


def test_invalid_record() -> None:
    """Test decoding garbage."""
    with pytest.raises(StorageException, match="unable to decode release record"):
        decode_release("not base64!")


@pytest.mark.parametrize(
    "driver_cls", [Driver, MemoryDriver, SecretsDriver, ConfigMapsDriver, SQLDriver]
)
def test_driver_annotations(driver_cls: type) -> None:
    """Test the driver listing methods annotate the builtin list type."""
    for method in (driver_cls.list, driver_cls.query):
        assert typing.get_type_hints(method)["return"] == list[Release]
