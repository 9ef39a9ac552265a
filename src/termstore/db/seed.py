"""Seed databases: build from packaged SQL, clone into new user stores."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import aiosqlite

from termstore.config import Config
from termstore.db.paths import PACKAGE_SEED_DIR, StoreKind, resolve_seed_path
from termstore.errors import SeedMissingError

logger = logging.getLogger(__name__)


def seed_sql_path(kind: StoreKind) -> Path:
    """Packaged SQL script the ``kind`` seed is built from."""
    return PACKAGE_SEED_DIR / kind.seed_filename.replace(".db", ".sql")


async def build_seed(sql_path: Path, db_path: Path) -> Path:
    """Execute ``sql_path`` into a brand-new database at ``db_path``.

    Any existing file at ``db_path`` is replaced so the seed is always
    built from a clean state.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if db_path.exists():
        db_path.unlink()
        logger.info("Removed previous seed %s", db_path)

    script = Path(sql_path).read_text(encoding="utf-8")
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(script)
        await db.commit()
    logger.info("Built seed %s from %s", db_path, sql_path)
    return db_path


async def build_all_seeds(target_dir: Path) -> list[Path]:
    """Build every packaged seed into ``target_dir``."""
    built = []
    for kind in StoreKind:
        built.append(await build_seed(seed_sql_path(kind), Path(target_dir) / kind.seed_filename))
    return built


async def ensure_seed(config: Config, kind: StoreKind) -> Path:
    """Return a seed database for ``kind``, building one if none is shipped.

    Prebuilt seeds are looked up first. Otherwise the packaged SQL is built
    into ``config.built_seed_dir`` and rebuilt whenever the SQL is newer.

    Raises:
        SeedMissingError: Neither a prebuilt seed nor the packaged SQL exists.
    """
    try:
        return resolve_seed_path(config, kind)
    except SeedMissingError:
        sql_path = seed_sql_path(kind)
        if not sql_path.is_file():
            raise

    target = config.built_seed_dir / kind.seed_filename
    if target.is_file() and target.stat().st_mtime >= sql_path.stat().st_mtime:
        return target

    logger.info("No prebuilt %s seed, building %s", kind.value, target)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, partial = tempfile.mkstemp(prefix=target.name, suffix=".partial", dir=target.parent)
    os.close(fd)
    try:
        await build_seed(sql_path, Path(partial))
        os.replace(partial, target)
    except Exception:
        Path(partial).unlink(missing_ok=True)
        raise
    return target


async def clone_seed(seed_path: Path, target_path: Path) -> None:
    """Copy the seed into ``target_path`` using the SQLite backup API."""
    source_uri = f"file:{seed_path}?mode=ro"
    async with aiosqlite.connect(source_uri, uri=True) as source:
        async with aiosqlite.connect(target_path) as target:
            await source.backup(target)
    logger.info("Database successfully copied from %s to %s", seed_path, target_path)


async def seed_tables(seed_path: Path) -> list[tuple[str, str]]:
    """Return ``(name, create_sql)`` for every user table in the seed."""
    source_uri = f"file:{seed_path}?mode=ro"
    async with aiosqlite.connect(source_uri, uri=True) as source:
        cursor = await source.execute(
            "SELECT name, sql FROM sqlite_master "
            "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        rows = await cursor.fetchall()
        await cursor.close()
    return [(name, sql) for name, sql in rows]
