"""Release record backend storing records in a relational database.

The database is addressed by a SQLAlchemy URL, read from the environment
variable `RELEASE_ENGINE_DRIVER_SQL_CONNECTION_STRING` when not given
explicitly. The tables are created on first use:

- `releases_v1` holds one row per revision with the encoded record
- `release_revisions_v1` holds the highest revision assigned per release name
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import os
from typing import Any

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from release_engine.exceptions import (
    ConfigurationError,
    ReleaseExistsError,
    ReleaseNotFoundError,
    StorageException,
    StorageWriteError,
)
from release_engine.release import Release

from .driver import Driver, parse_key
from .records import OWNER, decode_release, encode_release, record_labels

__all__ = [
    "CONNECTION_STRING_ENV",
    "SQLDriver",
]

_LOGGER = logging.getLogger(__name__)

CONNECTION_STRING_ENV = "RELEASE_ENGINE_DRIVER_SQL_CONNECTION_STRING"
DEFAULT_NAMESPACE = "default"

_METADATA = MetaData()

RELEASES_TABLE = Table(
    "releases_v1",
    _METADATA,
    Column("key", String(255), primary_key=True),
    Column("namespace", String(64), primary_key=True),
    Column("name", String(64), nullable=False, index=True),
    Column("version", Integer, nullable=False),
    Column("status", String(64), nullable=False),
    Column("owner", String(64), nullable=False),
    Column("body", Text, nullable=False),
)

REVISIONS_TABLE = Table(
    "release_revisions_v1",
    _METADATA,
    Column("namespace", String(64), primary_key=True),
    Column("name", String(64), primary_key=True),
    Column("revision", Integer, nullable=False),
)

# Labels stored as columns, the rest are matched against the decoded record
_LABEL_COLUMNS = {
    "name": RELEASES_TABLE.c.name,
    "owner": RELEASES_TABLE.c.owner,
    "status": RELEASES_TABLE.c.status,
}


class SQLDriver(Driver):
    """A release backend using a SQL database through SQLAlchemy."""

    name = "SQL"

    def __init__(
        self,
        connection_string: str | None = None,
        namespace: str = "",
        *,
        engine: Engine | None = None,
    ) -> None:
        """Initialize SQLDriver."""
        if engine is None:
            if not (connection_string := connection_string or os.environ.get(CONNECTION_STRING_ENV)):
                raise ConfigurationError(
                    f"SQL driver requires a connection string in {CONNECTION_STRING_ENV}"
                )
            try:
                engine = create_engine(connection_string)
            except SQLAlchemyError as err:
                raise ConfigurationError(f"Invalid SQL connection string: {err}") from err
        self._engine = engine
        self._namespace = namespace
        try:
            _METADATA.create_all(self._engine)
        except SQLAlchemyError as err:
            raise StorageException(f"Failed to initialize SQL storage: {err}") from err

    def _scoped(self, stmt: Any, table: Table) -> Any:
        if self._namespace:
            return stmt.where(table.c.namespace == self._namespace)
        return stmt

    def _namespace_of(self, rls: Release) -> str:
        return rls.namespace or self._namespace or DEFAULT_NAMESPACE

    def _select_bodies(self, stmt: Any) -> list[str]:
        try:
            with self._engine.connect() as conn:
                return [row.body for row in conn.execute(stmt)]
        except SQLAlchemyError as err:
            raise StorageException(f"Failed to query releases: {err}") from err

    def get(self, key: str) -> Release:
        """Return the record, raising ReleaseNotFoundError if it does not exist."""
        stmt = self._scoped(
            select(RELEASES_TABLE.c.body).where(RELEASES_TABLE.c.key == key),
            RELEASES_TABLE,
        )
        if not (bodies := self._select_bodies(stmt)):
            raise ReleaseNotFoundError(f"release: not found: {key}")
        return decode_release(bodies[0])

    def list(self, filter: Callable[[Release], bool]) -> list[Release]:
        """Return every record in scope accepted by the filter."""
        stmt = self._scoped(
            select(RELEASES_TABLE.c.body)
            .where(RELEASES_TABLE.c.owner == OWNER)
            .order_by(RELEASES_TABLE.c.name, RELEASES_TABLE.c.version),
            RELEASES_TABLE,
        )
        records = [decode_release(body) for body in self._select_bodies(stmt)]
        return [rls for rls in records if filter(rls)]

    def query(self, labels: dict[str, str]) -> list[Release]:
        """Return the records in scope carrying every label."""
        stmt = select(RELEASES_TABLE.c.body).order_by(RELEASES_TABLE.c.version)
        for label, value in labels.items():
            if (column := _LABEL_COLUMNS.get(label)) is not None:
                stmt = stmt.where(column == value)
        stmt = self._scoped(stmt, RELEASES_TABLE)
        results = []
        for body in self._select_bodies(stmt):
            rls = decode_release(body)
            stored = record_labels(rls)
            if all(stored.get(k) == v for k, v in labels.items()):
                results.append(rls)
        return results

    def _raise_high_water(self, conn: Connection, namespace: str, name: str, version: int) -> None:
        current = conn.execute(
            select(REVISIONS_TABLE.c.revision).where(
                REVISIONS_TABLE.c.namespace == namespace,
                REVISIONS_TABLE.c.name == name,
            )
        ).scalar()
        if current is None:
            conn.execute(
                insert(REVISIONS_TABLE).values(namespace=namespace, name=name, revision=version)
            )
        elif version > current:
            conn.execute(
                update(REVISIONS_TABLE)
                .where(
                    REVISIONS_TABLE.c.namespace == namespace,
                    REVISIONS_TABLE.c.name == name,
                )
                .values(revision=version)
            )

    def create(self, key: str, rls: Release) -> None:
        """Store a new record."""
        name, version = parse_key(key)
        namespace = self._namespace_of(rls)
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    insert(RELEASES_TABLE).values(
                        key=key,
                        namespace=namespace,
                        name=name,
                        version=version,
                        status=str(rls.status),
                        owner=OWNER,
                        body=encode_release(rls),
                    )
                )
                self._raise_high_water(conn, namespace, name, version)
        except IntegrityError as err:
            raise ReleaseExistsError(f"release: already exists: {key}") from err
        except SQLAlchemyError as err:
            raise StorageWriteError(f"create: failed to create {key}: {err}") from err

    def update(self, key: str, rls: Release) -> None:
        """Replace an existing record."""
        stmt = (
            update(RELEASES_TABLE)
            .where(
                RELEASES_TABLE.c.key == key,
                RELEASES_TABLE.c.namespace == self._namespace_of(rls),
            )
            .values(status=str(rls.status), body=encode_release(rls))
        )
        try:
            with self._engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as err:
            raise StorageWriteError(f"update: failed to update {key}: {err}") from err
        if result.rowcount == 0:
            raise ReleaseNotFoundError(f"release: not found: {key}")

    def delete(self, key: str) -> Release:
        """Remove a record, the revision stays reserved."""
        rls = self.get(key)
        stmt = delete(RELEASES_TABLE).where(
            RELEASES_TABLE.c.key == key,
            RELEASES_TABLE.c.namespace == self._namespace_of(rls),
        )
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as err:
            raise StorageWriteError(f"delete: failed to delete {key}: {err}") from err
        return rls

    def high_water(self, name: str) -> int:
        """Return the highest revision ever stored for the release name."""
        stmt = self._scoped(
            select(REVISIONS_TABLE.c.revision).where(REVISIONS_TABLE.c.name == name),
            REVISIONS_TABLE,
        )
        try:
            with self._engine.connect() as conn:
                stored = max(conn.execute(stmt).scalars(), default=0)
        except SQLAlchemyError as err:
            raise StorageException(f"Failed to query revisions of {name}: {err}") from err
        return max(stored, super().high_water(name))
