# dbmigrate

`dbmigrate` applies versioned schema migrations to a database. A migration
version can have an *up* body, a *down* body, or both. The engine reads the
current version that the database has recorded and works out which
migrations lie between that version and the target. It then runs them in
order. While a migration runs, the version is marked "dirty", so a failure
leaves a visible mark.

The package uses only the standard library. It ships a SQLite driver and an
in-memory stub driver.

## Applying migrations

```python
from dbmigrate.migrate import Migrate, NoChangeError
from dbmigrate.sqlite import SqliteDatabase

database = SqliteDatabase().open("sqlite://app.db")

m = Migrate("files", source, "sqlite", database)   # see "Migration sources" below

try:
    m.up()              # apply every pending up migration
except NoChangeError:
    pass                # already at the latest version

version, dirty = m.version()
m.close()               # closes both the source and the database
```

The `Migrate` methods:

- `migrate(version)` goes up or down to exactly `version`.
- `steps(n)` applies `n` migrations, up when `n > 0` and down when `n < 0`.
- `up()` and `down()` apply every remaining up or down migration.
- `force(version)` records `version` and clears the dirty flag. It runs
  nothing. Use `-1` for "no version".
- `drop()` removes everything from the database.
- `run(*migrations)` applies the given `Migration` objects as they are. It
  does not consult the source.
- `version()` returns `(version, dirty)`.
- `read(from_version, to_version)`, `read_up(from_version, limit)` and
  `read_down(from_version, limit)` are generators. They yield the `Migration`
  objects that an operation would apply. A `limit` of `-1` means no limit.

Set these attributes on an instance to change how it runs:

- `log`: a `Logger`, meaning any object with `printf(fmt, *args)` and
  `verbose()`.
- `prefetch_migrations`: the default is 10.
- `lock_timeout`: in seconds, 15 by default.
- `graceful_stop`: a `threading.Event`. Set it to stop after the migration that
  is running. `stop()` reports whether a stop has been requested.

Errors are raised as exceptions. All of them derive from `MigrateError`:

| Exception | Raised when |
| --- | --- |
| `NoChangeError` | nothing needs doing |
| `NilVersionError` | `version()` is called before any migration has been applied |
| `DirtyError` | the database is dirty; fix it, then `force` a version |
| `ShortLimitError` | fewer migrations exist than the requested step count (`.short` says how many) |
| `AlreadyLockedError` / `LockTimeoutError` | the database lock cannot be taken |
| `InvalidVersionError` | a forced version is below `-1` |

A version that the source does not know raises `FileNotFoundError`.

## Migration sources

`Migrate` accepts any source object that provides the following:

- `first()` returns the lowest version.
- `next(version)` and `prev(version)` return the neighbouring versions. They
  raise `FileNotFoundError` when there is none.
- `read_up(version)` and `read_down(version)` return `(body, identifier)`.
  They raise `FileNotFoundError` when that direction has no body. The body may
  be `bytes`, `str` or a readable file-like object.
- `close()`.

The package does not include a source. It has nothing that reads migrations
from a directory, an archive or a remote service, so you need to supply one.

## Databases

Every driver provides `lock`, `unlock`, `run`, `set_version`, `version`,
`drop` and `close`.

- `dbmigrate.sqlite` contains `SqliteDatabase` and `SqliteConfig`.
  `SqliteDatabase().open(url)` accepts `sqlite://path` and `sqlite3://path`
  URLs, including `file:` paths. The query option `x-migrations-table` renames
  the version table, which is `schema_migrations` by default. The option
  `x-no-tx-wrap=true` runs migrations outside a transaction. Any other query
  parameters go to SQLite as URI parameters. `with_instance(connection,
  config)` wraps a connection you already have. Both ways create the version
  table if it is missing.
- `dbmigrate.stub` keeps everything in memory. `StubDatabase` records every
  body it runs in `migration_sequence` and appends `DROP` on `drop()`. It
  offers `equal_sequence(seq)` for tests.

`dbmigrate.database` holds the shared pieces: `DatabaseError`, `LockedError`,
`NotLockedError`, `AtomicBool`, `generate_advisory_lock_id` and
`cas_restore_on_err`. `dbmigrate.url.scheme_from_url` takes the scheme off a
driver URL, and it raises `URLError` when the URL has no scheme.

Only SQLite and the in-memory stub are available as databases.

## Creating migration files

`dbmigrate.commands.create_cmd` creates an empty pair of files named
`<version>_<name>.up.<ext>` and `<version>_<name>.down.<ext>`. The version is
either a timestamp or the next zero-padded sequence number:

```python
from datetime import datetime, timezone

from dbmigrate.commands import create_cmd, next_seq_version

create_cmd("migrations", datetime.now(timezone.utc), "20060102150405",
           "add_users", "sql", seq=True, seq_digits=6, print_paths=False)

next_seq_version(["migrations/000003_add_users.up.sql"], 6)   # "000004"
```

Timestamp formats use the reference-date layout, for example `20060102150405`,
and `go_time_format(moment, layout)` renders them. The special formats `unix`
and `unixNano` give seconds and nanoseconds since the epoch. Problems raise
`CommandError`, for instance a duplicate version or a sequence number that has
outgrown its digits.

The same module contains `goto_cmd`, `up_cmd`, `down_cmd`, `drop_cmd`,
`force_cmd` and `version_cmd`. Each runs one operation on a `Migrate`
instance. They report through the module's `log`, which is a `CliLog`, and
they print a "no change" message instead of raising `NoChangeError`.
`num_down_migrations_from_args(apply_all, args)` reads the count for a down
command.

There is no `migrate` command-line program. These are functions to call from
your own code.