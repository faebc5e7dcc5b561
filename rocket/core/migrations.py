# rocket/core/migrations.py
"""
Schema migrations from a directory of ordered SQL files

Files are named ``<version>_<title>.up.sql`` / ``<version>_<title>.down.sql``
and applied in integer version order. The applied state lives in a
single-row ``schema_migrations(version, dirty)`` table; no row means no
migration has been applied. A migration that fails half-way leaves the
version marked dirty until someone forces a version.
"""

import os
import re
import sqlite3
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from sqlalchemy import BigInteger, Boolean, Column, MetaData, Table, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from rocket.core.database import sqlalchemy_url
from rocket.core.exceptions import MigrationError, NoChangeError

logger = logging.getLogger(__name__)

NIL_VERSION = -1

_FILENAME = re.compile(r'^([0-9]+)_(.*)\.(down|up)\.(.*)$')


def migration_source(root_path: str) -> str:
    """Return the ``file://`` URL of ``<root>/migrations``"""
    migration_dir = os.path.join(root_path, 'migrations')
    if not os.path.isdir(migration_dir):
        raise MigrationError(f"migration directory does not exist: {migration_dir}")
    return 'file://' + os.path.abspath(migration_dir).replace(os.sep, '/')


@dataclass
class Migration:
    version: int
    title: str
    up_path: Optional[str] = None
    down_path: Optional[str] = None

    def read(self, direction: str) -> str:
        path = self.up_path if direction == 'up' else self.down_path
        if path is None:
            raise MigrationError(f"no {direction} migration for version {self.version}")
        with open(path, encoding='utf-8') as fh:
            return fh.read()


def read_source(source_url: str) -> List[Migration]:
    """Collect migrations from a ``file://`` source, ordered by version"""
    parsed = urlparse(source_url)
    if parsed.scheme != 'file':
        raise MigrationError(f"unsupported migration source {source_url!r}")
    directory = unquote(parsed.netloc + parsed.path)
    if not os.path.isdir(directory):
        raise MigrationError(f"migration directory does not exist: {directory}")

    found: Dict[int, Migration] = {}
    for filename in sorted(os.listdir(directory)):
        match = _FILENAME.match(filename)
        if not match:
            continue
        version, title, direction = int(match.group(1)), match.group(2), match.group(3)
        migration = found.setdefault(version, Migration(version=version, title=title))
        path = os.path.join(directory, filename)
        if direction == 'up':
            if migration.up_path is not None:
                raise MigrationError(f"duplicate up migration for version {version}")
            migration.up_path = path
        else:
            if migration.down_path is not None:
                raise MigrationError(f"duplicate down migration for version {version}")
            migration.down_path = path

    return [found[v] for v in sorted(found)]


class Migrator:
    """
    Applies migrations from a source URL to a database URL

    Use as a context manager or call ``close()`` when done; every operation
    on the root application closes its migrator on return.
    """

    def __init__(self, source_url: str, database_url: str):
        self.migrations = read_source(source_url)
        try:
            self.engine: Engine = create_engine(sqlalchemy_url(database_url))
        except (SQLAlchemyError, ValueError) as e:
            raise MigrationError(f"failed to create migrate instance: {e}") from e

        self._metadata = MetaData()
        self._versions = Table(
            'schema_migrations', self._metadata,
            Column('version', BigInteger, primary_key=True, autoincrement=False),
            Column('dirty', Boolean, nullable=False),
        )
        try:
            self._metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            self.engine.dispose()
            raise MigrationError(f"failed to create migrate instance: {e}") from e

    def __enter__(self) -> 'Migrator':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self.engine.dispose()

    # Version bookkeeping

    def version(self) -> Tuple[int, bool]:
        """Return (version, dirty); version is -1 when nothing is applied"""
        with self.engine.connect() as conn:
            row = conn.execute(select(self._versions.c.version, self._versions.c.dirty)).first()
        if row is None:
            return NIL_VERSION, False
        return int(row.version), bool(row.dirty)

    def _set_version(self, version: int, dirty: bool) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self._versions))
            if version != NIL_VERSION:
                conn.execute(self._versions.insert().values(version=version, dirty=dirty))

    def _clean_version(self) -> int:
        version, dirty = self.version()
        if dirty:
            raise MigrationError(f"Dirty database version {version}. Fix and force version.")
        return version

    # Running

    def _execute_script(self, sql: str) -> None:
        if not sql.strip():
            return
        with self.engine.begin() as conn:
            if conn.dialect.name == 'sqlite':
                # sqlite3 only runs multi-statement scripts through executescript
                conn.connection.driver_connection.executescript(sql)
            else:
                conn.execution_options(no_parameters=True).exec_driver_sql(sql)

    def _apply(self, migration: Migration, direction: str, target: int) -> None:
        sql = migration.read(direction)
        self._set_version(target, dirty=True)
        try:
            self._execute_script(sql)
        except (SQLAlchemyError, sqlite3.Error) as e:
            logger.error(f"Migration {migration.version} {direction} failed: {e}")
            raise MigrationError(f"migration {migration.version}_{migration.title} {direction} failed: {e}") from e
        self._set_version(target, dirty=False)
        logger.info(f"Migrated {direction}: {migration.version}_{migration.title}")

    def _applied(self, version: int) -> List[Migration]:
        return [m for m in self.migrations if m.version <= version]

    def _pending(self, version: int) -> List[Migration]:
        return [m for m in self.migrations if m.version > version]

    def _step_up(self, pending: List[Migration]) -> None:
        for migration in pending:
            self._apply(migration, 'up', migration.version)

    def _step_down(self, applied: List[Migration], count: int) -> None:
        # Walk back from the newest; each step lands on the previous version
        for index in range(len(applied) - 1, len(applied) - 1 - count, -1):
            previous = applied[index - 1].version if index > 0 else NIL_VERSION
            self._apply(applied[index], 'down', previous)

    def up(self) -> None:
        """Apply every pending migration"""
        pending = self._pending(self._clean_version())
        if not pending:
            raise NoChangeError("no change")
        self._step_up(pending)

    def down(self) -> None:
        """Revert every applied migration"""
        applied = self._applied(self._clean_version())
        if not applied:
            raise NoChangeError("no change")
        self._step_down(applied, len(applied))

    def steps(self, n: int) -> None:
        """Apply ``n`` migrations, or revert ``-n`` when negative"""
        version = self._clean_version()
        if n == 0:
            raise NoChangeError("no change")
        if n > 0:
            pending = self._pending(version)
            if len(pending) < n:
                raise MigrationError(f"cannot apply {n} migrations, only {len(pending)} pending")
            self._step_up(pending[:n])
        else:
            applied = self._applied(version)
            if len(applied) < -n:
                raise MigrationError(f"cannot revert {-n} migrations, only {len(applied)} applied")
            self._step_down(applied, -n)

    def force(self, version: int) -> None:
        """Record ``version`` as applied and clean; -1 clears the record"""
        if version < NIL_VERSION:
            raise MigrationError(f"invalid version {version}")
        self._set_version(version, dirty=False)
        logger.info(f"Forced migration version to {version}")
