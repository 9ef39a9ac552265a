"""Tests for the legacy browser store migration."""

from __future__ import annotations

import pytest
import sqlalchemy as sa

from conftest import FakeBridge
from termstore.db.models import ALIASES, DATA_SOURCES, KEY_VALUE_STORE, USER_CONFIG
from termstore.errors import BridgeTimeoutError, InvalidUserError, MigrationValidationError
from termstore.legacy import LegacyStoreMigrator
from termstore.serializer import safe_parse

ALIAS_DATA = [
    {"id": "a1", "alias": "ll", "command": "ls -l", "createdAt": 1700000000000},
    {"id": "a2", "alias": "gs", "command": "git status"},
]
USER_CONFIG_DATA = {"theme": "dark", "fontSize": 14}
KV_DATA = [
    {"key": "k1", "value": {"a": 1}},
    {"key": "k2", "value": [1, 2, 3]},
    {"key": "k3", "value": "plain"},
]


def _full_bridge() -> FakeBridge:
    return FakeBridge(
        {ALIASES: ALIAS_DATA, USER_CONFIG: USER_CONFIG_DATA, KEY_VALUE_STORE: KV_DATA}
    )


def _migrator(handle, bridge) -> LegacyStoreMigrator:
    return LegacyStoreMigrator(handle, 1, bridge, retry_delay=0)


async def _rows(handle, sql):
    async with handle.begin() as conn:
        return (await conn.execute(sa.text(sql))).all()


async def _execute(handle, sql):
    async with handle.begin() as conn:
        await conn.execute(sa.text(sql))


async def _statuses(handle) -> dict:
    return {s.data_source: s for s in await handle.get_all_migration_statuses()}


@pytest.mark.parametrize("user_id", [0, -3, None])
def test_invalid_user_rejected(user_id):
    with pytest.raises(InvalidUserError):
        LegacyStoreMigrator(object(), user_id, FakeBridge())


async def test_empty_legacy_store(interactive_db, fake_bridge):
    assert await _migrator(interactive_db, fake_bridge).migrate_all_with_retry() is True

    statuses = await _statuses(interactive_db)
    assert sorted(statuses) == sorted(DATA_SOURCES)
    assert all(s.is_migrated and s.record_count == 0 for s in statuses.values())


async def test_empty_containers_count_zero(interactive_db):
    bridge = FakeBridge({ALIASES: [], USER_CONFIG: [], KEY_VALUE_STORE: []})

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry() is True

    assert await _rows(interactive_db, "SELECT * FROM key_value_store") == []
    statuses = await _statuses(interactive_db)
    assert statuses[USER_CONFIG].record_count == 0


async def test_full_migration(interactive_db):
    bridge = _full_bridge()

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry() is True

    aliases = await _rows(
        interactive_db, "SELECT id, alias, command, created_at FROM t_aliases ORDER BY id"
    )
    assert aliases[0] == ("a1", "ll", "ls -l", 1700000000000)
    assert tuple(aliases[1])[:3] == ("a2", "gs", "git status")
    assert aliases[1][3] > 0

    kv = dict(await _rows(interactive_db, "SELECT key, value FROM key_value_store"))
    assert safe_parse(kv[USER_CONFIG]) == USER_CONFIG_DATA
    assert safe_parse(kv["k1"]) == {"a": 1}
    assert safe_parse(kv["k2"]) == [1, 2, 3]
    assert safe_parse(kv["k3"]) == "plain"

    statuses = await _statuses(interactive_db)
    assert statuses[ALIASES].record_count == 2
    assert statuses[USER_CONFIG].record_count == 1
    assert statuses[KEY_VALUE_STORE].record_count == 3
    assert all(s.migrated_at for s in statuses.values())
    assert bridge.requests == list(DATA_SOURCES)


async def test_completed_migration_not_repeated(interactive_db):
    await _migrator(interactive_db, _full_bridge()).migrate_all_with_retry()

    bridge = _full_bridge()
    assert await _migrator(interactive_db, bridge).migrate_all_with_retry() is True
    assert bridge.requests == []


async def test_timeouts_then_success(interactive_db):
    bridge = _full_bridge()
    bridge.failures[USER_CONFIG] = [
        BridgeTimeoutError("Timeout waiting for legacy data: userConfig"),
        BridgeTimeoutError("Timeout waiting for legacy data: userConfig"),
    ]

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry(3) is True

    statuses = await _statuses(interactive_db)
    assert all(s.is_migrated for s in statuses.values())
    assert all(s.error_message is None for s in statuses.values())
    assert statuses[ALIASES].record_count == 2
    # Re-migration replaced rows instead of duplicating them
    assert len(await _rows(interactive_db, "SELECT * FROM t_aliases")) == 2
    assert bridge.requests.count(ALIASES) == 3
    assert bridge.requests.count(KEY_VALUE_STORE) == 1


async def test_attempts_exhausted(interactive_db):
    bridge = _full_bridge()
    bridge.failures[ALIASES] = [BridgeTimeoutError("t") for _ in range(2)]

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry(2) is False

    # Failed attempts leave no status rows behind
    assert await _statuses(interactive_db) == {}
    assert USER_CONFIG not in bridge.requests


async def test_failure_recorded_before_clearing(interactive_db):
    bridge = _full_bridge()
    bridge.failures[USER_CONFIG] = [BridgeTimeoutError("no answer")]
    migrator = _migrator(interactive_db, bridge)

    with pytest.raises(BridgeTimeoutError):
        await migrator.migrate_all()

    status = await migrator.get_status(USER_CONFIG)
    assert status.migrated == 0
    assert status.error_message == "no answer"
    assert (await migrator.get_status(ALIASES)).is_migrated
    assert await migrator.get_status(KEY_VALUE_STORE) is None


async def test_key_value_batch_is_atomic(interactive_db):
    await _execute(
        interactive_db,
        "CREATE TRIGGER fail_k3 BEFORE INSERT ON key_value_store "
        "WHEN NEW.key = 'k3' BEGIN SELECT RAISE(ABORT, 'disk full'); END",
    )
    bridge = FakeBridge({KEY_VALUE_STORE: KV_DATA})

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry(1) is False
    assert await _rows(interactive_db, "SELECT * FROM key_value_store") == []

    await _execute(interactive_db, "DROP TRIGGER fail_k3")

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry(1) is True
    rows = await _rows(interactive_db, "SELECT key FROM key_value_store ORDER BY key")
    keys = [r[0] for r in rows]
    assert keys == ["k1", "k2", "k3"]


async def test_key_value_items_without_key_skipped(interactive_db):
    bridge = FakeBridge({KEY_VALUE_STORE: [{"key": "k1", "value": 1}, {"value": 2}, "junk"]})

    assert await _migrator(interactive_db, bridge).migrate_all_with_retry() is True

    keys = [r[0] for r in await _rows(interactive_db, "SELECT key FROM key_value_store")]
    assert keys == ["k1"]
    statuses = await _statuses(interactive_db)
    assert statuses[KEY_VALUE_STORE].record_count == 3


async def test_deleted_rows_detected(interactive_db):
    await _migrator(interactive_db, _full_bridge()).migrate_all_with_retry()
    await _execute(interactive_db, "DELETE FROM t_aliases")

    migrator = _migrator(interactive_db, _full_bridge())
    assert await migrator.check_all_migrations_complete() is False
    assert await migrator.get_status(ALIASES) is None

    assert await migrator.migrate_all_with_retry() is True
    assert len(await _rows(interactive_db, "SELECT * FROM t_aliases")) == 2


async def test_deleted_user_config_detected(interactive_db):
    await _migrator(interactive_db, _full_bridge()).migrate_all_with_retry()
    await _execute(interactive_db, "DELETE FROM key_value_store WHERE key = 'userConfig'")

    migrator = _migrator(interactive_db, _full_bridge())
    assert await migrator.check_all_migrations_complete() is False
    assert await migrator.get_status(USER_CONFIG) is None
    assert (await migrator.get_status(ALIASES)).is_migrated


async def test_mark_complete_validates(interactive_db):
    migrator = _migrator(interactive_db, FakeBridge())

    with pytest.raises(MigrationValidationError, match="aliases"):
        await migrator.mark_migration_complete(ALIASES, 5)

    assert await migrator.get_status(ALIASES) is None


async def test_validate_count_mismatch(interactive_db):
    migrator = _migrator(interactive_db, FakeBridge({ALIASES: ALIAS_DATA}))
    await migrator.migrate_aliases()

    assert await migrator.validate_migration(ALIASES, 3) is False
    assert await migrator.get_status(ALIASES) is None


async def test_validate_unmigrated_row(interactive_db):
    migrator = _migrator(interactive_db, FakeBridge())
    await migrator.mark_migration_failed(ALIASES, "boom")

    assert await migrator.validate_migration(ALIASES, 0) is False
    assert await migrator.check_all_migrations_complete() is False


async def test_unserializable_user_config_fails(interactive_db):
    bridge = FakeBridge({USER_CONFIG: {"handler": object()}})
    migrator = _migrator(interactive_db, bridge)

    with pytest.raises(ValueError, match="serialize userConfig"):
        await migrator.migrate_user_config()

    status = await migrator.get_status(USER_CONFIG)
    assert status.migrated == 0
    assert "serialize" in status.error_message


async def test_clear_all_statuses(interactive_db):
    migrator = _migrator(interactive_db, FakeBridge())
    await migrator.migrate_all()
    assert len(await _statuses(interactive_db)) == 3

    await migrator.clear_all_statuses()

    assert await _statuses(interactive_db) == {}
