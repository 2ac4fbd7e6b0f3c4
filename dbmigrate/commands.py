"""Command helpers behind the command-line interface: creating migration files
and driving a :class:`~dbmigrate.migrate.Migrate` instance."""

from __future__ import annotations

import fnmatch
import os
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence, TextIO

from .migrate import Migrate, NoChangeError

DEFAULT_TIME_FORMAT = "20060102150405"
DEFAULT_TIMEZONE = "UTC"

_MAX_UINT64 = 2**64 - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class CommandError(Exception):
    """Raised when a command cannot be carried out as requested."""


class CliLog:
    """Log output for the command line, plain or timestamped when verbose."""

    def __init__(self, verbose: bool = False, stream: TextIO | None = None) -> None:
        self._verbose = bool(verbose)
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def _prefix(self) -> str:
        return time.strftime("%Y/%m/%d %H:%M:%S ")

    def printf(self, fmt: str, *args: Any) -> None:
        """Write a ``%``-formatted message."""
        text = fmt % args if args else fmt
        if self._verbose:
            if not text.endswith("\n"):
                text += "\n"
            text = self._prefix() + text
        self.stream.write(text)
        self.stream.flush()

    def println(self, *args: Any) -> None:
        """Write the arguments separated by spaces, followed by a newline."""
        text = " ".join(str(arg) for arg in args) + "\n"
        if self._verbose:
            text = self._prefix() + text
        self.stream.write(text)
        self.stream.flush()

    def verbose(self) -> bool:
        return self._verbose

    def _fatal(self, *args: Any) -> None:
        self.println(*args)
        raise SystemExit(1)

    def _fatal_err(self, error: BaseException) -> None:
        self._fatal("error:", error)


log = CliLog()
"""Logger used by the command helpers."""


def _utc_offset_seconds(moment: datetime) -> int:
    offset = moment.utcoffset()
    return 0 if offset is None else int(offset.total_seconds())


def _format_offset(seconds: int, colons: bool, with_minutes: bool, with_seconds: bool, zulu: bool) -> str:
    if zulu and seconds == 0:
        return "Z"
    sign = "-" if seconds < 0 else "+"
    seconds = abs(seconds)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    sep = ":" if colons else ""
    text = f"{sign}{hours:02d}"
    if with_minutes:
        text += f"{sep}{minutes:02d}"
    if with_seconds:
        text += f"{sep}{secs:02d}"
    return text


_ZONE_LAYOUTS = (
    ("070000", False, True, True),
    ("07:00:00", True, True, True),
    ("0700", False, True, False),
    ("07:00", True, True, False),
    ("07", False, False, False),
)


def _is_digit(text: str, index: int) -> bool:
    return index < len(text) and "0" <= text[index] <= "9"


def _chunk(layout: str, i: int, t: datetime) -> tuple[int, str] | None:
    """Render the layout element starting at ``i``; None means a literal character."""
    rest = layout[i:]
    c = rest[0]
    hour12 = t.hour % 12 or 12

    if c == "J" and rest.startswith("Jan"):
        name = _MONTHS[t.month - 1]
        return (7, name) if rest.startswith("January") else (3, name[:3])
    if c == "M":
        weekday = _WEEKDAYS[t.weekday()]
        if rest.startswith("Monday"):
            return 6, weekday
        if rest.startswith("Mon"):
            return 3, weekday[:3]
        if rest.startswith("MST"):
            name = t.tzname() if t.tzinfo is not None else "UTC"
            if not name:
                name = _format_offset(_utc_offset_seconds(t), False, True, False, False)
            return 3, name
    if c == "0":
        if len(rest) >= 2 and "1" <= rest[1] <= "6":
            value = {
                "1": t.month, "2": t.day, "3": hour12,
                "4": t.minute, "5": t.second, "6": t.year % 100,
            }[rest[1]]
            return 2, f"{value:02d}"
        if rest.startswith("002"):
            return 3, f"{t.timetuple().tm_yday:03d}"
    if c == "1":
        if rest.startswith("15"):
            return 2, f"{t.hour:02d}"
        return 1, str(t.month)
    if c == "2":
        if rest.startswith("2006"):
            return 4, f"{t.year:04d}"
        return 1, str(t.day)
    if c == "_":
        if rest.startswith("_2"):
            if rest.startswith("_2006"):
                return 1, "_"
            return 2, f"{t.day:>2}"
        if rest.startswith("__2"):
            return 3, f"{t.timetuple().tm_yday:>3}"
    if c == "3":
        return 1, str(hour12)
    if c == "4":
        return 1, str(t.minute)
    if c == "5":
        return 1, str(t.second)
    if c == "P" and rest.startswith("PM"):
        return 2, "PM" if t.hour >= 12 else "AM"
    if c == "p" and rest.startswith("pm"):
        return 2, "pm" if t.hour >= 12 else "am"
    if c in "-Z":
        for suffix, colons, minutes, seconds in _ZONE_LAYOUTS:
            if rest[1:].startswith(suffix):
                text = _format_offset(_utc_offset_seconds(t), colons, minutes, seconds, c == "Z")
                return 1 + len(suffix), text
    if c in ".," and len(rest) >= 2 and rest[1] in "09":
        digit = rest[1]
        j = 1
        while j < len(rest) and rest[j] == digit:
            j += 1
        if not _is_digit(rest, j):
            width = j - 1
            fraction = f"{t.microsecond * 1000:09d}".ljust(width, "0")[:width]
            if digit == "9":
                fraction = fraction.rstrip("0")
                if not fraction:
                    return j, ""
            return j, c + fraction
    return None


def go_time_format(moment: datetime, layout: str) -> str:
    """Format ``moment`` using a reference-time layout such as ``20060102150405``.

    Naive datetimes are treated as UTC.
    """
    out: list[str] = []
    i = 0
    while i < len(layout):
        chunk = _chunk(layout, i, moment)
        if chunk is None:
            out.append(layout[i])
            i += 1
        else:
            length, text = chunk
            out.append(text)
            i += length
    return "".join(out)


def _parse_uint(text: str) -> int:
    if not text or not all("0" <= ch <= "9" for ch in text):
        raise CommandError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if value > _MAX_UINT64:
        raise CommandError(f'parsing "{text}": value out of range')
    return value


def _base_name(path: str) -> str:
    stripped = path.rstrip("/" + os.sep)
    if not stripped:
        return os.sep if path else "."
    return os.path.basename(stripped)


def next_seq_version(matches: Sequence[str], seq_digits: int) -> str:
    """Return the zero-padded sequence number following the last of ``matches``."""
    if seq_digits <= 0:
        raise CommandError("Digits must be positive")

    next_seq = 1
    if matches:
        filename = matches[-1]
        base = _base_name(filename)
        index = base.find("_")
        # At least one digit must precede the underscore.
        if index < 1:
            raise CommandError(f"Malformed migration filename: {filename}")
        next_seq = _parse_uint(base[:index]) + 1

    version = f"{next_seq:0{seq_digits}d}"
    if len(version) > seq_digits:
        raise CommandError(
            f"Next sequence number {version} too large. At most {seq_digits} digits are allowed"
        )
    return version


def _unix_parts(moment: datetime) -> tuple[int, int]:
    aware = moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)
    delta: timedelta = aware - _EPOCH
    seconds = delta.days * 86400 + delta.seconds
    return seconds, delta.microseconds


def time_version(start_time: datetime, fmt: str) -> str:
    """Return a version string derived from ``start_time`` in the given format."""
    if fmt == "":
        raise CommandError("Time format may not be empty")
    if fmt == "unix":
        return str(_unix_parts(start_time)[0])
    if fmt == "unixNano":
        seconds, micros = _unix_parts(start_time)
        return str(seconds * 1_000_000_000 + micros * 1000)
    return go_time_format(start_time, fmt)


def _glob(pattern: str) -> list[str]:
    pattern = os.path.normpath(pattern)
    directory, name_pattern = os.path.split(pattern)
    try:
        names = os.listdir(directory or ".")
    except (OSError, ValueError):
        return []
    return sorted(
        os.path.join(directory, name) if directory else name
        for name in names
        if fnmatch.fnmatchcase(name, name_pattern)
    )


def _create_file(filename: str) -> None:
    with open(filename, "x"):
        pass


def create_cmd(
    directory: str,
    start_time: datetime,
    fmt: str,
    name: str,
    ext: str,
    seq: bool,
    seq_digits: int,
    print_paths: bool,
) -> None:
    """Create a pair of empty up/down migration files named after ``name``."""
    if seq and fmt != DEFAULT_TIME_FORMAT:
        raise CommandError("The seq and format options are mutually exclusive")

    directory = os.path.normpath(directory) if directory else "."
    ext = "." + ext.removeprefix(".")

    if seq:
        version = next_seq_version(_glob(os.path.join(directory, "*" + ext)), seq_digits)
    else:
        version = time_version(start_time, fmt)

    if _glob(os.path.join(directory, version + "_*" + ext)):
        raise CommandError(f"duplicate migration version: {version}")

    os.makedirs(directory, exist_ok=True)

    for direction in ("up", "down"):
        filename = os.path.join(directory, f"{version}_{name}.{direction}{ext}")
        _create_file(filename)
        if print_paths:
            log.println(os.path.abspath(filename))


def _tolerating_no_change(action: Any, *args: Any) -> None:
    try:
        action(*args)
    except NoChangeError as exc:
        log.println(exc)


def goto_cmd(migrater: Migrate, version: int) -> None:
    """Migrate to ``version``; an unchanged database is only reported."""
    _tolerating_no_change(migrater.migrate, version)


def up_cmd(migrater: Migrate, limit: int) -> None:
    """Apply ``limit`` up migrations, or all of them when ``limit`` is negative."""
    if limit >= 0:
        _tolerating_no_change(migrater.steps, limit)
    else:
        _tolerating_no_change(migrater.up)


def down_cmd(migrater: Migrate, limit: int) -> None:
    """Apply ``limit`` down migrations, or all of them when ``limit`` is negative."""
    if limit >= 0:
        _tolerating_no_change(migrater.steps, -limit)
    else:
        _tolerating_no_change(migrater.down)


def drop_cmd(migrater: Migrate) -> None:
    """Drop everything in the database."""
    migrater.drop()


def force_cmd(migrater: Migrate, version: int) -> None:
    """Set the version without running any migration."""
    migrater.force(version)


def version_cmd(migrater: Migrate) -> None:
    """Print the current version, marking it when dirty."""
    version, dirty = migrater.version()
    if dirty:
        log.printf("%s (dirty)\n", version)
    else:
        log.println(version)


def num_down_migrations_from_args(apply_all: bool, args: Iterable[str]) -> tuple[int, bool]:
    """Return how many down migrations to apply and whether to confirm first.

    ``-1`` means all of them.
    """
    args = list(args)
    if apply_all:
        if args:
            raise CommandError("-all cannot be used with other arguments")
        return -1, False
    if not args:
        return -1, True
    if len(args) == 1:
        try:
            return _parse_uint(args[0]), False
        except CommandError:
            raise CommandError("can't read limit argument N") from None
    raise CommandError("too many arguments")