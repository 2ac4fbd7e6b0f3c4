import pytest

from dbmigrate.database import (
    AtomicBool,
    DatabaseError,
    LockedError,
    NotLockedError,
    cas_restore_on_err,
    generate_advisory_lock_id,
)


@pytest.mark.parametrize(
    ("additional", "expected"),
    [
        ((), "1764327054"),
        (("schema_name_1",), "2453313553"),
        (("schema_name_2",), "235207038"),
        (("schema_name_1", "schema_name_2"), "3743845847"),
    ],
)
def test_generate_advisory_lock_id(additional, expected):
    assert generate_advisory_lock_id("database_name", *additional) == expected


class _CasError(Exception):
    pass


class _CallbackError(Exception):
    pass


def test_cas_positive_lock():
    lock = AtomicBool(False)
    cas_restore_on_err(lock, False, True, _CasError("cas"), lambda: None)
    assert lock.load() is True


def test_cas_negative_lock():
    lock = AtomicBool(True)
    cas_error = _CasError("cas")
    with pytest.raises(_CasError) as info:
        cas_restore_on_err(lock, False, True, cas_error, lambda: None)
    assert info.value is cas_error
    assert lock.load() is True


def test_cas_negative_with_callback_error():
    lock = AtomicBool(False)
    callback_error = _CallbackError("callback")

    def failing():
        raise callback_error

    with pytest.raises(_CallbackError) as info:
        cas_restore_on_err(lock, False, True, _CasError("cas"), failing)
    assert info.value is callback_error
    assert lock.load() is False


def test_atomic_bool_cas_and_store():
    flag = AtomicBool()
    assert flag.cas(False, True) is True
    assert flag.cas(False, True) is False
    flag.store(False)
    assert flag.load() is False


def test_database_error_formats_query_and_details():
    plain = DatabaseError(orig_error=ValueError("boom"), query="SELECT 1")
    assert str(plain) == "boom in line 0: SELECT 1"
    detailed = DatabaseError("failed", orig_error=ValueError("boom"), query="SELECT 1", line=3)
    assert str(detailed) == "failed in line 3: SELECT 1 (details: boom)"


def test_lock_errors_are_database_errors():
    assert isinstance(LockedError(), DatabaseError)
    assert str(NotLockedError()) == "can't unlock, as not currently locked"