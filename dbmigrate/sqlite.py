"""SQLite database driver, reachable under the ``sqlite`` and ``sqlite3`` schemes."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode

from .database import (
    NIL_VERSION,
    AtomicBool,
    DatabaseError,
    LockedError,
    NotLockedError,
)
from .url import scheme_from_url

DEFAULT_MIGRATIONS_TABLE = "schema_migrations"
SCHEMES = ("sqlite", "sqlite3")

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


@dataclass
class SqliteConfig:
    """Settings for the SQLite driver."""

    migrations_table: str = ""
    database_name: str = ""
    no_tx_wrap: bool = False


def _read_all(migration: Any) -> bytes:
    if isinstance(migration, (bytes, bytearray)):
        return bytes(migration)
    if isinstance(migration, str):
        return migration.encode("utf-8")
    data = migration.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f'parsing "{value}": invalid syntax')


class SqliteDatabase:
    """Database driver storing the migration version in a SQLite table."""

    def __init__(self, connection: sqlite3.Connection | None = None, config: SqliteConfig | None = None) -> None:
        self.connection = connection
        self.config = config
        self._locked = AtomicBool()

    def _ensure_version_table(self) -> None:
        self.lock()
        try:
            table = self.config.migrations_table
            self.connection.executescript(
                f"CREATE TABLE IF NOT EXISTS {table} (version uint64,dirty bool);\n"
                f"CREATE UNIQUE INDEX IF NOT EXISTS version_unique ON {table} (version);"
            )
        finally:
            self.unlock()

    def open(self, url: str) -> "SqliteDatabase":
        scheme = scheme_from_url(url)
        if scheme not in SCHEMES:
            raise DatabaseError(f"unsupported scheme: {scheme}")
        rest = url[len(scheme) + 1:]
        if rest.startswith("//"):
            rest = rest[2:]
        path, _, raw_query = rest.partition("?")
        params = parse_qsl(raw_query, keep_blank_values=True)

        custom: dict[str, str] = {}
        kept = []
        for key, value in params:
            if key.startswith("x-"):
                custom.setdefault(key, value)
            else:
                kept.append((key, value))

        migrations_table = custom.get("x-migrations-table") or DEFAULT_MIGRATIONS_TABLE
        no_tx_wrap = False
        raw_no_tx_wrap = custom.get("x-no-tx-wrap", "")
        if raw_no_tx_wrap:
            try:
                no_tx_wrap = _parse_bool(raw_no_tx_wrap)
            except ValueError as exc:
                raise ValueError(f"x-no-tx-wrap: {exc}") from exc

        query = urlencode(kept)
        if path.startswith("file:"):
            target, use_uri = (f"{path}?{query}" if query else path), True
        elif query:
            target, use_uri = f"file:{quote(path)}?{query}", True
        else:
            target, use_uri = path, False

        connection = sqlite3.connect(target, uri=use_uri, isolation_level=None, check_same_thread=False)
        try:
            return with_instance(
                connection,
                SqliteConfig(
                    migrations_table=migrations_table,
                    database_name=path,
                    no_tx_wrap=no_tx_wrap,
                ),
            )
        except BaseException:
            connection.close()
            raise

    def close(self) -> None:
        self.connection.close()

    def drop(self) -> None:
        query = "SELECT name FROM sqlite_master WHERE type = 'table';"
        try:
            rows = self.connection.execute(query).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(orig_error=exc, query=query) from exc

        table_names = [name for (name,) in rows if name]
        if not table_names:
            return
        for table in table_names:
            self._execute_query("DROP TABLE " + table)
        try:
            self.connection.execute("VACUUM")
        except sqlite3.Error as exc:
            raise DatabaseError(orig_error=exc, query="VACUUM") from exc

    def lock(self) -> None:
        if not self._locked.cas(False, True):
            raise LockedError()

    def unlock(self) -> None:
        if not self._locked.cas(True, False):
            raise NotLockedError()

    def run(self, migration: Any) -> None:
        query = _read_all(migration).decode("utf-8")
        if self.config.no_tx_wrap:
            self._execute_query_no_tx(query)
        else:
            self._execute_query(query)

    def _rollback(self) -> None:
        if self.connection.in_transaction:
            try:
                self.connection.rollback()
            except sqlite3.Error:
                pass

    def _execute_query(self, query: str) -> None:
        try:
            self.connection.executescript(f"BEGIN;\n{query}\n;\nCOMMIT;")
        except sqlite3.Error as exc:
            self._rollback()
            raise DatabaseError(orig_error=exc, query=query) from exc

    def _execute_query_no_tx(self, query: str) -> None:
        try:
            self.connection.executescript(query)
        except sqlite3.Error as exc:
            raise DatabaseError(orig_error=exc, query=query) from exc

    def set_version(self, version: int, dirty: bool) -> None:
        table = self.config.migrations_table
        try:
            self.connection.execute("BEGIN")
        except sqlite3.Error as exc:
            raise DatabaseError("transaction start failed", orig_error=exc) from exc

        query = "DELETE FROM " + table
        try:
            self.connection.execute(query)
            # A dirty nil version is kept so a failed first down migration stays visible.
            if version >= 0 or (version == NIL_VERSION and dirty):
                query = f"INSERT INTO {table} (version, dirty) VALUES (?, ?)"
                self.connection.execute(query, (version, bool(dirty)))
        except sqlite3.Error as exc:
            self._rollback()
            raise DatabaseError(orig_error=exc, query=query) from exc

        try:
            self.connection.commit()
        except sqlite3.Error as exc:
            raise DatabaseError("transaction commit failed", orig_error=exc) from exc

    def version(self) -> tuple[int, bool]:
        query = f"SELECT version, dirty FROM {self.config.migrations_table} LIMIT 1"
        try:
            row = self.connection.execute(query).fetchone()
        except sqlite3.Error:
            return NIL_VERSION, False
        if row is None or row[0] is None or row[1] is None:
            return NIL_VERSION, False
        return int(row[0]), bool(row[1])


def with_instance(connection: sqlite3.Connection, config: SqliteConfig | None) -> SqliteDatabase:
    """Wrap an open SQLite connection and make sure the version table exists."""
    if config is None:
        raise DatabaseError("no config")
    connection.execute("SELECT 1").fetchone()
    if not config.migrations_table:
        config.migrations_table = DEFAULT_MIGRATIONS_TABLE
    driver = SqliteDatabase(connection, config)
    driver._ensure_version_table()
    return driver