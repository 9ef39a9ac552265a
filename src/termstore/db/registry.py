"""Per-user database handles with single-flight initialization.

The first caller for a (user, store kind) pair runs the bootstrap: place
the file (relocate a legacy file or clone the seed), synchronize the
schema, open the handle and, for the interactive store, migrate the legacy
browser store. Concurrent callers await the same task and share its result
or its exception.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from termstore.bridge import DataBridge
from termstore.config import Config
from termstore.db.engine import DatabaseHandle
from termstore.db.models import MigrationStatus
from termstore.db.paths import (
    StoreKind,
    ensure_user_dir,
    relocate,
    user_database_path,
)
from termstore.db.schema import synchronize
from termstore.db.seed import clone_seed, ensure_seed
from termstore.errors import InvalidUserError, SeedMissingError
from termstore.legacy import LegacyStoreMigrator

logger = logging.getLogger(__name__)

# Used when the user skipped login
GUEST_USER_ID = 999999999

_current_user_id: int | None = None


def set_current_user_id(user_id: int | None) -> None:
    """Set the user that calls without an explicit user id act on."""
    global _current_user_id
    _current_user_id = user_id


def get_current_user_id() -> int | None:
    """Return the current user id, or None when nobody is logged in."""
    return _current_user_id


def resolve_user_id(user_id: int | None) -> int:
    """Return ``user_id`` or the current user, validated.

    Raises:
        InvalidUserError: Neither is a positive integer.
    """
    target = user_id if user_id is not None else _current_user_id
    if isinstance(target, bool) or not isinstance(target, int) or target <= 0:
        raise InvalidUserError(f"User ID is required for database initialization (got {target!r})")
    return target


class DatabaseRegistry:
    """Cache of open user stores, one handle per (user, kind)."""

    def __init__(self, config: Config | None = None, bridge: DataBridge | None = None) -> None:
        self.config = config or Config.from_env()
        self._bridge = bridge
        self._instances: dict[tuple[int, StoreKind], DatabaseHandle] = {}
        self._initializing: dict[tuple[int, StoreKind], asyncio.Task] = {}

    def attach_bridge(self, bridge: DataBridge | None) -> None:
        """Set the bridge used to migrate the legacy store (None disables it)."""
        self._bridge = bridge

    @property
    def bridge(self) -> DataBridge | None:
        """The attached bridge, if any."""
        return self._bridge

    def is_initializing(self, user_id: int, kind: StoreKind = StoreKind.INTERACTIVE) -> bool:
        """True while a bootstrap for (user_id, kind) is in flight."""
        return (user_id, kind) in self._initializing

    def cached(
        self, user_id: int, kind: StoreKind = StoreKind.INTERACTIVE
    ) -> DatabaseHandle | None:
        """Return the open handle without initializing."""
        return self._instances.get((user_id, kind))

    async def acquire(
        self,
        user_id: int | None = None,
        kind: StoreKind = StoreKind.INTERACTIVE,
    ) -> DatabaseHandle:
        """Return the handle for ``user_id``'s ``kind`` store, opening it once.

        Raises:
            InvalidUserError: No usable user id.
            SeedMissingError: A new store is needed and no seed was found.
        """
        target = resolve_user_id(user_id)
        key = (target, kind)

        handle = self._instances.get(key)
        if handle is not None:
            return handle

        task = self._initializing.get(key)
        if task is not None:
            logger.info("Waiting for existing %s initialization for user %s", kind.value, target)
            return await asyncio.shield(task)

        logger.info("Creating new %s database instance for user %s", kind.value, target)
        task = asyncio.create_task(
            self._initialize(target, kind), name=f"init-{kind.value}-{target}"
        )
        self._initializing[key] = task
        return await asyncio.shield(task)

    async def _initialize(self, user_id: int, kind: StoreKind) -> DatabaseHandle:
        key = (user_id, kind)
        try:
            handle = await self._bootstrap(user_id, kind)
            self._instances[key] = handle
            return handle
        finally:
            self._initializing.pop(key, None)

    async def _place_file(
        self, user_id: int, kind: StoreKind, path: Path
    ) -> tuple[bool, Path | None]:
        """Make sure the store file exists. Returns (fresh, seed_path)."""
        try:
            seed_path = await ensure_seed(self.config, kind)
        except SeedMissingError:
            seed_path = None

        if path.exists():
            logger.info("Target %s database exists, synchronizing schema", kind.value)
            if seed_path is None:
                logger.warning("No seed for %s, skipping table reconciliation", kind.value)
            return False, seed_path

        if relocate(self.config, user_id, kind):
            return False, seed_path

        if seed_path is None:
            raise SeedMissingError(f"Initial database ({kind.seed_filename}) not found")

        logger.info("Target %s database does not exist, copying from %s", kind.value, seed_path)
        try:
            await clone_seed(seed_path, path)
        except Exception:
            path.unlink(missing_ok=True)
            raise
        return True, seed_path

    async def _bootstrap(self, user_id: int, kind: StoreKind) -> DatabaseHandle:
        ensure_user_dir(self.config, user_id)
        path = user_database_path(self.config, user_id, kind)

        try:
            fresh, seed_path = await self._place_file(user_id, kind, path)
            handle = DatabaseHandle(path, user_id, kind)
            try:
                await synchronize(handle, kind, seed_path, fresh=fresh)
            except Exception:
                await handle.close()
                raise
        except Exception:
            logger.exception("%s database initialization failed for user %s", kind.value, user_id)
            raise

        logger.info("%s database connection established: %s", kind.value, path)

        if kind is StoreKind.INTERACTIVE:
            await self._migrate_legacy_store(handle, user_id)
        return handle

    async def _migrate_legacy_store(self, handle: DatabaseHandle, user_id: int) -> bool:
        if self._bridge is None:
            logger.info("Skip legacy store migration: UI process not attached")
            return False
        try:
            logger.info("Starting legacy store migration check for user %s", user_id)
            migrator = LegacyStoreMigrator(
                handle, user_id, self._bridge, retry_delay=self.config.retry_delay
            )
            success = await migrator.migrate_all_with_retry(self.config.migration_attempts)
        except Exception:
            logger.exception("Legacy store migration error")
            return False

        if success:
            logger.info("Legacy store migration completed successfully")
            logger.info("Please restart the application manually to complete the migration")
        else:
            logger.warning("Legacy store migration failed, will fall back to the legacy store")
        return success

    async def invalidate(self, user_id: int, kind: StoreKind = StoreKind.INTERACTIVE) -> None:
        """Close and forget one handle; the next acquire reopens it."""
        handle = self._instances.pop((user_id, kind), None)
        if handle is not None:
            await handle.close()

    async def close_all(self) -> None:
        """Close every open handle."""
        handles = list(self._instances.values())
        self._instances.clear()
        for handle in handles:
            await handle.close()


# ----------------------------------------------------------------------
# Process-wide registry
# ----------------------------------------------------------------------

_registry: DatabaseRegistry | None = None


def get_registry() -> DatabaseRegistry:
    """Return the process-wide registry, creating it from env on first use."""
    global _registry
    if _registry is None:
        _registry = DatabaseRegistry(Config.from_env())
    return _registry


def configure(config: Config, bridge: DataBridge | None = None) -> DatabaseRegistry:
    """Replace the process-wide registry. Open handles of the old one are not closed."""
    global _registry
    _registry = DatabaseRegistry(config, bridge=bridge)
    return _registry


def attach_bridge(bridge: DataBridge | None) -> None:
    """Attach the UI process bridge to the process-wide registry."""
    get_registry().attach_bridge(bridge)


async def acquire_interactive_database(user_id: int | None = None) -> DatabaseHandle:
    """Chat, asset and agent store of ``user_id`` (default: current user)."""
    return await get_registry().acquire(user_id, StoreKind.INTERACTIVE)


async def acquire_history_database(user_id: int | None = None) -> DatabaseHandle:
    """Command history and autocomplete store of ``user_id`` (default: current user)."""
    return await get_registry().acquire(user_id, StoreKind.TERMINAL_HISTORY)


async def get_migration_status(
    data_source: str, user_id: int | None = None
) -> MigrationStatus | None:
    """Legacy migration status of one data source."""
    handle = await acquire_interactive_database(user_id)
    return await handle.get_migration_status(data_source)


async def get_all_migration_statuses(user_id: int | None = None) -> list[MigrationStatus]:
    """Legacy migration status of every data source."""
    handle = await acquire_interactive_database(user_id)
    return await handle.get_all_migration_statuses()


async def close_all() -> None:
    """Close every handle of the process-wide registry."""
    if _registry is not None:
        await _registry.close_all()
