"""Shared pieces for database drivers: errors, lock state and lock ids."""

from __future__ import annotations

import threading
import zlib
from typing import Callable

NIL_VERSION = -1
"""Version reported when no migration has been applied."""

_ADVISORY_LOCK_ID_SALT = 1486364155


class DatabaseError(Exception):
    """An error reported by a database driver, optionally with the failing query."""

    def __init__(
        self,
        message: str = "",
        *,
        orig_error: BaseException | None = None,
        query: str = "",
        line: int = 0,
    ) -> None:
        self.message = message
        self.orig_error = orig_error
        self.query = query
        self.line = line
        super().__init__(str(self))

    def __str__(self) -> str:
        head = self.message or (str(self.orig_error) if self.orig_error is not None else "")
        if self.query:
            head = f"{head} in line {self.line}: {self.query}"
        if self.message and self.orig_error is not None:
            head = f"{head} (details: {self.orig_error})"
        return head


class LockedError(DatabaseError):
    """Raised when a lock is requested while the database is already locked."""

    def __init__(self, message: str = "can't acquire lock") -> None:
        super().__init__(message)


class NotLockedError(DatabaseError):
    """Raised when an unlock is requested while the database is not locked."""

    def __init__(self, message: str = "can't unlock, as not currently locked") -> None:
        super().__init__(message)


class AtomicBool:
    """A boolean flag with thread-safe compare-and-swap."""

    def __init__(self, value: bool = False) -> None:
        self._value = bool(value)
        self._mutex = threading.Lock()

    def load(self) -> bool:
        with self._mutex:
            return self._value

    def store(self, value: bool) -> None:
        with self._mutex:
            self._value = bool(value)

    def cas(self, old: bool, new: bool) -> bool:
        """Set the flag to ``new`` if it equals ``old``; report whether it did."""
        with self._mutex:
            if self._value != old:
                return False
            self._value = bool(new)
            return True


def generate_advisory_lock_id(database_name: str, *args: str) -> str:
    """Derive a numeric advisory lock id from a database name and extra names."""
    if args:
        database_name = "\x00".join([*args, database_name])
    checksum = zlib.crc32(database_name.encode("utf-8")) & 0xFFFFFFFF
    return str((checksum * _ADVISORY_LOCK_ID_SALT) & 0xFFFFFFFF)


def cas_restore_on_err(
    lock: AtomicBool,
    old: bool,
    new: bool,
    cas_error: BaseException,
    func: Callable[[], object],
) -> None:
    """Flip ``lock`` from ``old`` to ``new`` and run ``func``.

    Raises ``cas_error`` if the flip fails. If ``func`` raises, the lock is
    restored to ``old`` and the exception propagates.
    """
    if not lock.cas(old, new):
        raise cas_error
    try:
        func()
    except BaseException:
        lock.store(old)
        raise