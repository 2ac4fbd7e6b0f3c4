"""In-memory database driver that records what it is asked to run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from .database import NIL_VERSION, AtomicBool, LockedError, NotLockedError

DROP = "DROP"


@dataclass
class StubConfig:
    """Configuration for the stub driver; it has no settings."""


def _read_all(migration: Any) -> bytes:
    if isinstance(migration, (bytes, bytearray)):
        return bytes(migration)
    if isinstance(migration, str):
        return migration.encode("utf-8")
    data = migration.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class StubDatabase:
    """Database driver keeping version and migration history in memory."""

    def __init__(self, url: str = "", instance: Any = None, config: StubConfig | None = None) -> None:
        self.url = url
        self.instance = instance
        self.current_version = NIL_VERSION
        self.migration_sequence: list[str] = []
        self.last_run_migration: bytes | None = None
        self.is_dirty = False
        self.config = config
        self.closed = False
        self._locked = AtomicBool()

    def open(self, url: str) -> "StubDatabase":
        return StubDatabase(url=url, config=StubConfig())

    def close(self) -> None:
        """Mark the driver as closed; there is nothing else to release."""
        self.closed = True

    def lock(self) -> None:
        if not self._locked.cas(False, True):
            raise LockedError()

    def unlock(self) -> None:
        if not self._locked.cas(True, False):
            raise NotLockedError()

    def run(self, migration: Any) -> None:
        body = _read_all(migration)
        self.last_run_migration = body
        self.migration_sequence.append(body.decode("utf-8", errors="surrogateescape"))

    def set_version(self, version: int, dirty: bool) -> None:
        self.current_version = version
        self.is_dirty = dirty

    def version(self) -> tuple[int, bool]:
        return self.current_version, self.is_dirty

    def drop(self) -> None:
        self.current_version = NIL_VERSION
        self.last_run_migration = None
        self.migration_sequence.append(DROP)

    def equal_sequence(self, sequence: Iterable[str]) -> bool:
        return list(sequence) == self.migration_sequence


def with_instance(instance: Any, config: StubConfig | None) -> StubDatabase:
    """Create a stub driver around an arbitrary instance."""
    return StubDatabase(instance=instance, config=config)