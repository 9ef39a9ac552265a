"""Tests for building and cloning seed databases."""

import os
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from termstore.config import Config
from termstore.db.paths import StoreKind
from termstore.db.seed import build_seed, clone_seed, ensure_seed, seed_sql_path, seed_tables
from termstore.errors import SeedMissingError


async def _tables(path) -> list[str]:
    async with aiosqlite.connect(path) as db:
        cursor = await db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        rows = await cursor.fetchall()
    return [r[0] for r in rows]


def test_packaged_sql_exists():
    for kind in StoreKind:
        assert seed_sql_path(kind).is_file()


async def test_build_all_seeds(seed_dir):
    assert (seed_dir / "init_chaterm.db").is_file()
    assert (seed_dir / "init_data.db").is_file()


async def test_interactive_seed_tables(seed_dir):
    names = await _tables(seed_dir / "init_chaterm.db")
    for table in ("t_assets", "t_aliases", "key_value_store", "indexdb_migration_status"):
        assert table in names
    # Added later by schema steps
    assert "mcp_tool_state" not in names
    assert "skills_state" not in names


async def test_history_seed_has_evict_defaults(seed_dir):
    async with aiosqlite.connect(seed_dir / "init_data.db") as db:
        cursor = await db.execute(
            "SELECT evict_type, evict_value FROM linux_commands_evict ORDER BY evict_type"
        )
        rows = await cursor.fetchall()
    assert rows == [("count", 100000), ("time", 2592000)]


async def test_build_replaces_existing(tmp_path):
    target = tmp_path / "seed.db"
    target.write_bytes(b"garbage that is not sqlite")
    await build_seed(seed_sql_path(StoreKind.TERMINAL_HISTORY), target)
    assert "linux_commands_history" in await _tables(target)


async def test_seed_tables(seed_dir):
    tables = await seed_tables(seed_dir / "init_data.db")
    names = [name for name, _ in tables]
    assert names == sorted(names)
    assert "linux_commands_evict" in names
    assert all(sql.upper().startswith("CREATE TABLE") for _, sql in tables)
    assert not any(name.startswith("sqlite_") for name in names)


async def test_clone_seed(seed_dir, tmp_path):
    target = tmp_path / "copy.db"
    await clone_seed(seed_dir / "init_chaterm.db", target)
    assert await _tables(target) == await _tables(seed_dir / "init_chaterm.db")


# ---------------------------------------------------------------
# Seeds built on demand
# ---------------------------------------------------------------

@pytest.fixture
def no_prebuilt(tmp_path, monkeypatch):
    """Hide any prebuilt seed so only the packaged SQL is available."""
    monkeypatch.chdir(tmp_path)
    with patch("termstore.db.paths.PACKAGE_SEED_DIR", tmp_path / "no-prebuilt"):
        yield


async def test_ensure_seed_prefers_prebuilt(seed_dir, tmp_path):
    config = Config(app_data_dir=tmp_path / "app", seed_dir=seed_dir)
    assert await ensure_seed(config, StoreKind.INTERACTIVE) == seed_dir / "init_chaterm.db"
    assert not config.built_seed_dir.exists()


async def test_ensure_seed_builds_from_sql(no_prebuilt, tmp_path):
    config = Config(app_data_dir=tmp_path / "app")

    path = await ensure_seed(config, StoreKind.TERMINAL_HISTORY)

    assert path == config.built_seed_dir / "init_data.db"
    assert "linux_commands_evict" in await _tables(path)
    assert [p.name for p in config.built_seed_dir.iterdir()] == ["init_data.db"]


async def test_ensure_seed_reuses_built_seed(no_prebuilt, tmp_path):
    config = Config(app_data_dir=tmp_path / "app")
    first = await ensure_seed(config, StoreKind.INTERACTIVE)

    with patch("termstore.db.seed.build_seed", AsyncMock()) as mock_build:
        second = await ensure_seed(config, StoreKind.INTERACTIVE)

    assert second == first
    mock_build.assert_not_awaited()


async def test_ensure_seed_rebuilds_stale_seed(no_prebuilt, tmp_path):
    config = Config(app_data_dir=tmp_path / "app")
    path = await ensure_seed(config, StoreKind.INTERACTIVE)
    os.utime(path, (0, 0))

    await ensure_seed(config, StoreKind.INTERACTIVE)

    assert path.stat().st_mtime > 0
    assert "t_aliases" in await _tables(path)


async def test_ensure_seed_without_sql(no_prebuilt, tmp_path):
    config = Config(app_data_dir=tmp_path / "app")
    with patch("termstore.db.seed.PACKAGE_SEED_DIR", tmp_path / "no-sql"):
        with pytest.raises(SeedMissingError):
            await ensure_seed(config, StoreKind.INTERACTIVE)
