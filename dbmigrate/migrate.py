"""Reads migrations from a source and applies them to a database driver."""

from __future__ import annotations

import queue
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Protocol, runtime_checkable

from .database import NIL_VERSION

DEFAULT_PREFETCH_MIGRATIONS = 10
"""Number of migrations read ahead of the one being applied."""

DEFAULT_LOCK_TIMEOUT = 15.0
"""Seconds a database driver has to acquire its lock."""


@runtime_checkable
class Logger(Protocol):
    """Anything that can receive log output from a :class:`Migrate`."""

    def printf(self, fmt: str, *args: Any) -> None:
        """Write a ``%``-style formatted message."""

    def verbose(self) -> bool:
        """Report whether verbose output is wanted."""


class MigrateError(Exception):
    """Base class for errors raised while migrating."""


class NoChangeError(MigrateError):
    """Nothing had to be done."""

    def __init__(self, message: str = "no change") -> None:
        super().__init__(message)


class NilVersionError(MigrateError):
    """No migration has been applied yet."""

    def __init__(self, message: str = "no migration") -> None:
        super().__init__(message)


class InvalidVersionError(MigrateError):
    """A version below -1 was requested."""

    def __init__(self, message: str = "version must be >= -1") -> None:
        super().__init__(message)


class AlreadyLockedError(MigrateError):
    """This migrater already holds the database lock."""

    def __init__(self, message: str = "database locked") -> None:
        super().__init__(message)


class LockTimeoutError(MigrateError):
    """The database lock could not be acquired in time."""

    def __init__(self, message: str = "timeout: can't acquire database lock") -> None:
        super().__init__(message)


class ShortLimitError(MigrateError):
    """Fewer migrations were available than the requested limit."""

    def __init__(self, short: int) -> None:
        self.short = short
        super().__init__(f"limit {short} short")


class DirtyError(MigrateError):
    """The database was left dirty by an earlier failed migration."""

    def __init__(self, version: int) -> None:
        self.version = version
        super().__init__(f"Dirty database version {version}. Fix and force version.")


def _read_all(body: Any) -> bytes:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")
    data = body.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _close(body: Any) -> None:
    closer = getattr(body, "close", None)
    if callable(closer):
        closer()


def _format_duration(seconds: float) -> str:
    if seconds < 1e-3:
        return f"{seconds * 1e6:.3f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.3f}ms"
    return f"{seconds:.3f}s"


class Migration:
    """One step from ``version`` to ``target_version``, with an optional body."""

    def __init__(self, body: Any, identifier: str, version: int, target_version: int) -> None:
        self.body = body
        self.identifier = identifier
        self.version = version
        self.target_version = target_version
        self.buffered_body: bytes | None = None
        self.scheduled = time.monotonic()
        self.started_buffering: float | None = None
        self.finished_buffering: float | None = None
        self.finished_reading: float | None = None
        self._buffer_lock = threading.Lock()

    def buffer(self) -> None:
        """Read the whole body into ``buffered_body``; later calls do nothing."""
        with self._buffer_lock:
            if self.finished_reading is not None:
                return
            self.started_buffering = time.monotonic()
            if self.body is not None:
                try:
                    self.buffered_body = _read_all(self.body)
                finally:
                    _close(self.body)
            self.finished_buffering = time.monotonic()
            self.finished_reading = self.finished_buffering

    def log_string(self) -> str:
        direction = "d" if self.target_version < self.version else "u"
        return f"{self.version}/{direction} {self.identifier}"

    def __repr__(self) -> str:
        return f"Migration({self.log_string()!r} -> {self.target_version})"


class Migrate:
    """Moves a database between migration versions provided by a source."""

    def __init__(self, source_name: str, source: Any, database_name: str, database: Any) -> None:
        self.source_name = source_name
        self.source = source
        self.database_name = database_name
        self.database = database
        self.log: Logger | None = None
        self.graceful_stop = threading.Event()
        self.prefetch_migrations = DEFAULT_PREFETCH_MIGRATIONS
        self.lock_timeout = DEFAULT_LOCK_TIMEOUT
        self._is_locked_mu = threading.Lock()
        self._is_locked = False
        self._is_graceful_stop = False

    def close(self) -> None:
        """Close the source and the database, raising if either fails."""
        self._log_verbose("Closing source and database\n")
        errors: list[Exception] = []
        for closer in (self.source.close, self.database.close):
            try:
                closer()
            except Exception as exc:
                errors.append(exc)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise MigrateError("; ".join(str(e) for e in errors)) from errors[0]

    def migrate(self, version: int) -> None:
        """Migrate up or down until ``version`` is reached."""
        with self._holding_lock():
            current = self._clean_version()
            self._run_migrations(self.read(current, int(version)))

    def steps(self, n: int) -> None:
        """Apply ``n`` migrations: up when positive, down when negative."""
        if n == 0:
            raise NoChangeError()
        with self._holding_lock():
            current = self._clean_version()
            if n > 0:
                self._run_migrations(self.read_up(current, n))
            else:
                self._run_migrations(self.read_down(current, -n))

    def up(self) -> None:
        """Apply every remaining up migration."""
        with self._holding_lock():
            current = self._clean_version()
            self._run_migrations(self.read_up(current, -1))

    def down(self) -> None:
        """Apply every down migration."""
        with self._holding_lock():
            current = self._clean_version()
            self._run_migrations(self.read_down(current, -1))

    def drop(self) -> None:
        """Delete everything in the database."""
        with self._holding_lock():
            self.database.drop()

    def run(self, *args: Migration) -> None:
        """Apply the given migrations without consulting the source."""
        if not args:
            raise NoChangeError()
        with self._holding_lock():
            self._clean_version()
            self._run_migrations(self._scheduled(args))

    def force(self, version: int) -> None:
        """Set the version and clear the dirty flag without running anything."""
        if version < -1:
            raise InvalidVersionError()
        with self._holding_lock():
            self.database.set_version(version, False)

    def version(self) -> tuple[int, bool]:
        """Return the active version and dirty flag; raise if none is applied."""
        current, dirty = self.database.version()
        if current == NIL_VERSION:
            raise NilVersionError()
        return current, dirty

    def stop(self) -> bool:
        """Report whether a graceful stop has been requested."""
        if self._is_graceful_stop:
            return True
        if self.graceful_stop.is_set():
            self._is_graceful_stop = True
            return True
        return False

    def read(self, from_version: int, to_version: int) -> Iterator[Migration]:
        """Yield the migrations leading from ``from_version`` to ``to_version``."""
        if from_version >= 0:
            self._version_exists(from_version)
        if to_version >= 0:
            self._version_exists(to_version)
        if from_version == to_version:
            raise NoChangeError()

        if from_version < to_version:
            if from_version == -1:
                first = self.source.first()
                yield self._new_migration(first, first)
                from_version = first
            while from_version < to_version:
                if self.stop():
                    return
                following = self.source.next(from_version)
                yield self._new_migration(following, following)
                from_version = following
            return

        while from_version > to_version and from_version >= 0:
            if self.stop():
                return
            previous = self._neighbour(self.source.prev, from_version)
            if previous is None:
                if to_version == -1:
                    yield self._new_migration(from_version, -1)
                    return
                raise FileNotFoundError(f"no version before {from_version}")
            yield self._new_migration(from_version, previous)
            from_version = previous

    def read_up(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` up migrations after ``from_version``; -1 means all."""
        if from_version >= 0:
            self._version_exists(from_version)
        if limit == 0:
            raise NoChangeError()

        count = 0
        while limit == -1 or count < limit:
            if self.stop():
                return
            if from_version == -1:
                first = self.source.first()
                yield self._new_migration(first, first)
                from_version = first
                count += 1
                continue

            following = self._neighbour(self.source.next, from_version)
            if following is None:
                if limit == -1 and count == 0:
                    raise NoChangeError()
                if limit == -1:
                    return
                if count == 0:
                    raise FileNotFoundError(f"no version after {from_version}")
                raise ShortLimitError(limit - count)

            yield self._new_migration(following, following)
            from_version = following
            count += 1

    def read_down(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` down migrations from ``from_version``; -1 means all."""
        if from_version >= 0:
            self._version_exists(from_version)
        if limit == 0:
            raise NoChangeError()
        if from_version == -1 and limit == -1:
            raise NoChangeError()
        if from_version == -1 and limit > 0:
            raise FileNotFoundError("no migration applied to go down from")

        count = 0
        while limit == -1 or count < limit:
            if self.stop():
                return
            previous = self._neighbour(self.source.prev, from_version)
            if previous is None:
                if limit == -1 or limit - count > 0:
                    first = self.source.first()
                    yield self._new_migration(first, -1)
                    count += 1
                if count < limit:
                    raise ShortLimitError(limit - count)
                return

            yield self._new_migration(from_version, previous)
            from_version = previous
            count += 1

    @staticmethod
    def _neighbour(getter: Callable[[int], int], version: int) -> int | None:
        try:
            return getter(version)
        except FileNotFoundError:
            return None

    def _scheduled(self, migrations: Iterable[Migration]) -> Iterator[Migration]:
        for migration in migrations:
            self._log_scheduled(migration)
            yield migration

    def _clean_version(self) -> int:
        current, dirty = self.database.version()
        if dirty:
            raise DirtyError(current)
        return current

    def _run_migrations(self, migrations: Iterable[Migration]) -> None:
        for migration in migrations:
            if self.stop():
                return
            migration.buffer()

            self.database.set_version(migration.target_version, True)
            if migration.body is not None:
                self._log_verbose("Read and execute %s\n", migration.log_string())
                self.database.run(migration.buffered_body)
            self.database.set_version(migration.target_version, False)

            end = time.monotonic()
            finished = migration.finished_reading or end
            started = migration.started_buffering or finished
            read_time = finished - started
            run_time = end - finished
            if self.log is not None:
                if self.log.verbose():
                    self._log_printf(
                        "Finished %s (read %s, ran %s)\n",
                        migration.log_string(),
                        _format_duration(read_time),
                        _format_duration(run_time),
                    )
                else:
                    self._log_printf(
                        "%s (%s)\n", migration.log_string(), _format_duration(read_time + run_time)
                    )

    def _version_exists(self, version: int) -> None:
        for reader in (self.source.read_up, self.source.read_down):
            try:
                body, _ = reader(version)
            except FileNotFoundError:
                continue
            _close(body)
            return
        error = FileNotFoundError(f"no migration found for version {version}: file does not exist")
        self._log_err(error)
        raise error

    def _new_migration(self, version: int, target_version: int) -> Migration:
        reader = self.source.read_up if target_version >= version else self.source.read_down
        try:
            body, identifier = reader(version)
        except FileNotFoundError:
            migration = Migration(None, "", version, target_version)
        else:
            migration = Migration(body, identifier, version, target_version)
        self._log_scheduled(migration)
        return migration

    def _log_scheduled(self, migration: Migration) -> None:
        if self.prefetch_migrations > 0 and migration.body is not None:
            self._log_verbose("Start buffering %s\n", migration.log_string())
        else:
            self._log_verbose("Scheduled %s\n", migration.log_string())

    def _lock(self) -> None:
        with self._is_locked_mu:
            if self._is_locked:
                raise AlreadyLockedError()
            outcome: queue.Queue = queue.Queue(maxsize=1)

            def attempt() -> None:
                try:
                    self.database.lock()
                except BaseException as exc:
                    outcome.put(exc)
                else:
                    outcome.put(None)

            threading.Thread(target=attempt, daemon=True).start()
            try:
                error = outcome.get(timeout=self.lock_timeout)
            except queue.Empty:
                raise LockTimeoutError() from None
            if error is not None:
                raise error
            self._is_locked = True

    def _unlock(self) -> None:
        with self._is_locked_mu:
            self.database.unlock()
            self._is_locked = False

    @contextmanager
    def _holding_lock(self) -> Iterator[None]:
        self._lock()
        try:
            yield
        except Exception as exc:
            try:
                self._unlock()
            except Exception as unlock_exc:
                raise MigrateError(f"{exc}; {unlock_exc}") from exc
            raise
        self._unlock()

    def _log_printf(self, fmt: str, *args: Any) -> None:
        if self.log is not None:
            self.log.printf(fmt, *args)

    def _log_verbose(self, fmt: str, *args: Any) -> None:
        if self.log is not None and self.log.verbose():
            self.log.printf(fmt, *args)

    def _log_err(self, error: BaseException) -> None:
        if self.log is not None:
            self.log.printf("error: %s", error)