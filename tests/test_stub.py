import io

import pytest

from dbmigrate.database import NIL_VERSION, LockedError, NotLockedError
from dbmigrate.stub import DROP, StubConfig, StubDatabase, with_instance


@pytest.fixture
def driver():
    return StubDatabase().open("")


def test_open_starts_at_nil_version(driver):
    assert driver.version() == (NIL_VERSION, False)
    assert driver.migration_sequence == []
    assert driver.config == StubConfig()


def test_open_keeps_url():
    assert StubDatabase().open("stub://somewhere").url == "stub://somewhere"


def test_with_instance_keeps_instance_and_config():
    config = StubConfig()
    instance = {"name": "database"}
    driver = with_instance(instance, config)
    assert driver.instance is instance
    assert driver.config is config
    assert driver.version() == (NIL_VERSION, False)


def test_lock_twice_fails(driver):
    driver.lock()
    with pytest.raises(LockedError):
        driver.lock()
    driver.unlock()
    with pytest.raises(NotLockedError):
        driver.unlock()


def test_run_records_migration(driver):
    driver.run(io.BytesIO(b"/* foobar migration */"))
    driver.run(b"second")
    assert driver.last_run_migration == b"second"
    assert driver.migration_sequence == ["/* foobar migration */", "second"]
    assert driver.equal_sequence(["/* foobar migration */", "second"])
    assert not driver.equal_sequence(["second"])


def test_set_version(driver):
    driver.set_version(3, True)
    assert driver.version() == (3, True)
    driver.set_version(4, False)
    assert driver.version() == (4, False)


def test_drop_resets_version_and_records_drop(driver):
    driver.run(b"CREATE 1")
    driver.set_version(1, False)
    driver.drop()
    assert driver.version()[0] == NIL_VERSION
    assert driver.last_run_migration is None
    assert driver.migration_sequence == ["CREATE 1", DROP]