"""Bring a user store up to the current schema."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from termstore.db.engine import DatabaseHandle
from termstore.db.paths import StoreKind
from termstore.db.seed import seed_tables
from termstore.db.steps import HISTORY_STEPS, INTERACTIVE_STEPS, MigrationStep
from termstore.errors import SchemaStepError

logger = logging.getLogger(__name__)

STEPS_BY_KIND: dict[StoreKind, Sequence[MigrationStep]] = {
    StoreKind.INTERACTIVE: INTERACTIVE_STEPS,
    StoreKind.TERMINAL_HISTORY: HISTORY_STEPS,
}


def _table_names(connection: Connection) -> set[str]:
    return set(sa.inspect(connection).get_table_names())


async def create_missing_tables(handle: DatabaseHandle, seed_path: Path) -> list[str]:
    """Create every table the seed has and the store lacks.

    Uses the seed's own CREATE TABLE statement. Returns the created names.
    """
    reference = await seed_tables(seed_path)
    created: list[str] = []
    async with handle.begin() as conn:
        existing = await conn.run_sync(_table_names)
        for name, create_sql in reference:
            if name in existing or not create_sql:
                continue
            logger.info("Creating missing table: %s", name)
            await conn.exec_driver_sql(create_sql)
            created.append(name)
    return created


async def run_steps(handle: DatabaseHandle, steps: Sequence[MigrationStep]) -> list[str]:
    """Run ``steps`` in order, each in its own transaction.

    Returns the names of steps that failed and were skipped.

    Raises:
        SchemaStepError: A critical step failed.
    """
    failed: list[str] = []
    for step in steps:
        try:
            async with handle.begin() as conn:
                await conn.run_sync(step.apply)
        except Exception as exc:
            error = SchemaStepError(step.name, str(exc))
            if step.critical:
                logger.error("Schema step %s failed", step.name, exc_info=True)
                raise error from exc
            logger.warning("Schema step %s failed, skipping: %s", step.name, exc, exc_info=True)
            failed.append(step.name)
    return failed


async def synchronize(
    handle: DatabaseHandle,
    kind: StoreKind,
    seed_path: Path | None,
    fresh: bool = False,
) -> list[str]:
    """Reconcile tables against the seed and apply all migration steps.

    A fresh store was just copied from the seed and skips the table diff,
    but still runs every step: the seed may lag behind the latest schema.
    Without a seed the diff is skipped as well.
    Returns the names of failed, non-critical steps.
    """
    if not fresh and seed_path is not None:
        created = await create_missing_tables(handle, seed_path)
        if created:
            logger.info("Created %d missing table(s) in %s", len(created), handle.path)

    logger.info("Applying migrations to %s database %s", kind.value, handle.path)
    failed = await run_steps(handle, STEPS_BY_KIND[kind])
    if failed:
        logger.warning("Schema partially upgraded, failed steps: %s", ", ".join(failed))
    else:
        logger.info("Migrations applied successfully to %s", handle.path)
    return failed
