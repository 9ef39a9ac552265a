"""One-time migration of the browser-managed legacy store into SQLite.

Three data sources are moved independently, each with its own row in
``indexdb_migration_status``:

- ``aliases``        -> ``t_aliases``
- ``userConfig``     -> ``key_value_store`` row ``userConfig``
- ``keyValueStore``  -> ``key_value_store`` (every other key)

A source marked migrated is re-validated against the destination tables on
every start, so rows removed out of band trigger a new migration.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy import delete, func, insert, select

from termstore.bridge import DataBridge
from termstore.config import DEFAULT_MIGRATION_ATTEMPTS, DEFAULT_RETRY_DELAY
from termstore.db.engine import DatabaseHandle
from termstore.db.models import (
    ALIASES,
    DATA_SOURCES,
    KEY_VALUE_STORE,
    USER_CONFIG,
    Alias,
    KeyValue,
    MigrationStatus,
    now_ms,
)
from termstore.errors import InvalidUserError, MigrationValidationError
from termstore.serializer import safe_stringify

logger = logging.getLogger(__name__)

_status = MigrationStatus.__table__
_aliases = Alias.__table__
_kv = KeyValue.__table__


class LegacyStoreMigrator:
    """Pull legacy data through the bridge and write it to the user store."""

    def __init__(
        self,
        handle: DatabaseHandle,
        user_id: int,
        bridge: DataBridge,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        if not user_id or user_id <= 0:
            raise InvalidUserError("Invalid user id for migration")
        self._handle = handle
        self._user_id = user_id
        self._bridge = bridge
        self._retry_delay = retry_delay

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def migrate_all_with_retry(self, max_attempts: int = DEFAULT_MIGRATION_ATTEMPTS) -> bool:
        """Migrate every source, retrying the whole batch on failure.

        Returns False once ``max_attempts`` are exhausted; the caller keeps
        reading the legacy store for this session.
        """
        logger.info("Starting legacy store migration, max attempts %d", max_attempts)

        if await self.check_all_migrations_complete():
            logger.info("All legacy data already migrated and validated")
            return True

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info("Migration attempt %d/%d", attempt, max_attempts)
                await self.migrate_all()

                if await self.check_all_migrations_complete():
                    logger.info("Migration completed and validated successfully")
                    return True

                logger.warning("Migration incomplete, will retry...")
            except Exception as e:
                logger.error("Migration attempt %d failed: %s", attempt, e)
                # Start the next attempt from a clean slate, including
                # sources that had already succeeded.
                await self.clear_all_statuses()

                if attempt < max_attempts:
                    logger.info("Waiting %.1fs before retry...", self._retry_delay)
                    await asyncio.sleep(self._retry_delay)

        logger.error("Migration failed after %d attempts", max_attempts)
        return False

    async def migrate_all(self) -> None:
        """Run the three source migrations in order."""
        logger.info("Starting legacy store migration for user %s", self._user_id)
        await self.migrate_aliases()
        await self.migrate_user_config()
        await self.migrate_key_value_store()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def migrate_aliases(self) -> None:
        """Move command aliases into ``t_aliases``."""
        if await self._already_migrated(ALIASES):
            return

        try:
            data = await self._bridge.request_legacy_data(ALIASES)
            if not data or not isinstance(data, list):
                logger.info("No aliases data to migrate")
                await self.mark_migration_complete(ALIASES, 0)
                return

            logger.info("Read %d aliases from legacy store", len(data))
            now = now_ms()
            rows = [
                {
                    "id": item.get("id"),
                    "alias": item.get("alias"),
                    "command": item.get("command"),
                    "created_at": item.get("createdAt") or now,
                }
                for item in data
            ]
            async with self._handle.begin() as conn:
                await conn.execute(insert(_aliases).prefix_with("OR REPLACE"), rows)

            await self.mark_migration_complete(ALIASES, len(data))
            logger.info("Aliases migration completed: %d records", len(data))
        except Exception as e:
            await self.mark_migration_failed(ALIASES, str(e))
            raise

    async def migrate_user_config(self) -> None:
        """Store the whole user configuration object as one JSON row."""
        if await self._already_migrated(USER_CONFIG):
            return

        try:
            data = await self._bridge.request_legacy_data(USER_CONFIG)
            if not data:
                logger.info("No userConfig data to migrate")
                await self.mark_migration_complete(USER_CONFIG, 0)
                return

            result = safe_stringify(data)
            if not result.success:
                raise ValueError(f"Failed to serialize userConfig: {result.error}")

            async with self._handle.begin() as conn:
                await conn.execute(
                    insert(_kv).prefix_with("OR REPLACE"),
                    {"key": USER_CONFIG, "value": result.data, "updated_at": now_ms()},
                )

            await self.mark_migration_complete(USER_CONFIG, 1)
            logger.info("UserConfig migration completed")
        except Exception as e:
            await self.mark_migration_failed(USER_CONFIG, str(e))
            raise

    async def migrate_key_value_store(self) -> None:
        """Move generic key/value pairs into ``key_value_store``."""
        if await self._already_migrated(KEY_VALUE_STORE):
            return

        try:
            data = await self._bridge.request_legacy_data(KEY_VALUE_STORE)
            if not data or not isinstance(data, list):
                logger.info("No keyValueStore data to migrate")
                await self.mark_migration_complete(KEY_VALUE_STORE, 0)
                return

            logger.info("Read %d key-value pairs from legacy store", len(data))
            rows = self._serialize_pairs(data)
            if rows:
                async with self._handle.begin() as conn:
                    await conn.execute(insert(_kv).prefix_with("OR REPLACE"), rows)

            await self.mark_migration_complete(KEY_VALUE_STORE, len(data))
            logger.info("KeyValueStore migration completed: %d records", len(data))
        except Exception as e:
            await self.mark_migration_failed(KEY_VALUE_STORE, str(e))
            raise

    @staticmethod
    def _serialize_pairs(data: list[Any]) -> list[dict[str, Any]]:
        now = now_ms()
        rows = []
        for item in data:
            if not isinstance(item, dict) or not item.get("key"):
                logger.warning("Skipping key-value item without a key: %r", item)
                continue
            result = safe_stringify(item.get("value"))
            if not result.success:
                logger.warning("Failed to serialize key %r: %s", item["key"], result.error)
                continue
            rows.append({"key": item["key"], "value": result.data, "updated_at": now})
        return rows

    # ------------------------------------------------------------------
    # Status bookkeeping
    # ------------------------------------------------------------------

    async def get_status(self, data_source: str) -> MigrationStatus | None:
        """Status row for ``data_source``, or None."""
        return await self._handle.get_migration_status(data_source)

    async def _already_migrated(self, data_source: str) -> bool:
        status = await self.get_status(data_source)
        if status is not None and status.is_migrated:
            logger.info("%s already migrated, skip", data_source)
            return True
        logger.info("Starting %s migration...", data_source)
        return False

    async def mark_migration_complete(self, data_source: str, count: int) -> None:
        """Record ``data_source`` as migrated with ``count`` records, then validate.

        Raises:
            MigrationValidationError: The stored data does not match ``count``.
        """
        async with self._handle.begin() as conn:
            await conn.execute(
                insert(_status).prefix_with("OR REPLACE"),
                {
                    "data_source": data_source,
                    "migrated": 1,
                    "migrated_at": now_ms(),
                    "record_count": count,
                },
            )
        if not await self.validate_migration(data_source, count):
            raise MigrationValidationError(data_source)

    async def mark_migration_failed(self, data_source: str, error: str) -> None:
        """Record a failed attempt for ``data_source``."""
        async with self._handle.begin() as conn:
            await conn.execute(
                insert(_status).prefix_with("OR REPLACE"),
                {"data_source": data_source, "migrated": 0, "error_message": error},
            )

    async def clear_status(self, data_source: str) -> None:
        """Forget ``data_source`` so it is migrated again."""
        async with self._handle.begin() as conn:
            await conn.execute(delete(_status).where(_status.c.data_source == data_source))

    async def clear_all_statuses(self) -> None:
        """Forget every source."""
        async with self._handle.begin() as conn:
            await conn.execute(delete(_status))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def _destination_count(self, conn, data_source: str) -> int:
        if data_source == ALIASES:
            stmt = select(func.count()).select_from(_aliases)
        elif data_source == USER_CONFIG:
            stmt = select(func.count()).select_from(_kv).where(_kv.c.key == USER_CONFIG)
        else:
            stmt = select(func.count()).select_from(_kv).where(_kv.c.key != USER_CONFIG)
        return (await conn.execute(stmt)).scalar_one()

    async def _check(self, data_source: str, expected_count: int) -> bool:
        status = await self.get_status(data_source)
        if status is None or not status.is_migrated:
            return False

        if status.record_count != expected_count:
            logger.error(
                "Record count mismatch for %s: expected %d, got %s",
                data_source, expected_count, status.record_count,
            )
            return False

        async with self._handle.begin() as conn:
            actual_count = await self._destination_count(conn, data_source)
            if actual_count == 0 and expected_count > 0:
                logger.error("No data found for %s", data_source)
                return False

            if data_source == ALIASES and expected_count > 0:
                nulls = (
                    await conn.execute(
                        select(func.count())
                        .select_from(_aliases)
                        .where(_aliases.c.alias.is_(None) | _aliases.c.command.is_(None))
                    )
                ).scalar_one()
                if nulls > 0:
                    logger.error("Found %d aliases with null fields", nulls)
                    return False

        logger.info("Validation passed for %s", data_source)
        return True

    async def validate_migration(self, data_source: str, expected_count: int) -> bool:
        """Check the stored status and destination rows for ``data_source``.

        A failed check deletes the status row so the source is migrated
        again on the next attempt.
        """
        try:
            valid = await self._check(data_source, expected_count)
        except Exception:
            logger.exception("Validation failed for %s", data_source)
            valid = False
        if not valid:
            logger.warning("Clearing invalid migration status for %s", data_source)
            await self.clear_status(data_source)
        return valid

    async def check_all_migrations_complete(self) -> bool:
        """True if every source is marked migrated and passes validation."""
        for data_source in DATA_SOURCES:
            status = await self.get_status(data_source)
            if status is None or not status.is_migrated:
                return False
            if not await self.validate_migration(data_source, status.record_count or 0):
                return False
        return True
