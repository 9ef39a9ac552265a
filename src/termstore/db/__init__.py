"""Per-user SQLite stores on async SQLAlchemy over aiosqlite."""

from termstore.db.engine import DatabaseHandle
from termstore.db.models import Alias, Base, KeyValue, MigrationStatus
from termstore.db.paths import StoreKind, relocate, resolve_seed_path
from termstore.db.registry import (
    GUEST_USER_ID,
    DatabaseRegistry,
    acquire_history_database,
    acquire_interactive_database,
    attach_bridge,
    close_all,
    configure,
    get_all_migration_statuses,
    get_current_user_id,
    get_migration_status,
    get_registry,
    set_current_user_id,
)
from termstore.db.schema import synchronize

__all__ = [
    "Alias",
    "Base",
    "DatabaseHandle",
    "DatabaseRegistry",
    "GUEST_USER_ID",
    "KeyValue",
    "MigrationStatus",
    "StoreKind",
    "acquire_history_database",
    "acquire_interactive_database",
    "attach_bridge",
    "close_all",
    "configure",
    "get_all_migration_statuses",
    "get_current_user_id",
    "get_migration_status",
    "get_registry",
    "relocate",
    "resolve_seed_path",
    "set_current_user_id",
    "synchronize",
]
