"""termstore: per-user SQLite stores for the terminal + AI assistant client.

Library API::

    import termstore

    termstore.set_current_user_id(42)
    db = await termstore.acquire_interactive_database()
    async with db.session() as session:
        ...

Attach a bridge to the UI process to migrate the legacy browser store the
first time a user's interactive database is opened::

    bridge = termstore.DataBridge.from_streams(reader, writer)
    termstore.attach_bridge(bridge)
"""

from __future__ import annotations

from termstore.bridge import Channel, DataBridge, StreamChannel
from termstore.config import Config
from termstore.db import (
    GUEST_USER_ID,
    DatabaseHandle,
    DatabaseRegistry,
    MigrationStatus,
    StoreKind,
    acquire_history_database,
    acquire_interactive_database,
    attach_bridge,
    close_all,
    configure,
    get_all_migration_statuses,
    get_current_user_id,
    get_migration_status,
    set_current_user_id,
)
from termstore.errors import (
    BridgeError,
    BridgeRemoteError,
    BridgeTimeoutError,
    InvalidUserError,
    MigrationValidationError,
    SchemaStepError,
    SeedMissingError,
    TermstoreError,
)
from termstore.legacy import LegacyStoreMigrator

__all__ = [
    "BridgeError",
    "BridgeRemoteError",
    "BridgeTimeoutError",
    "Channel",
    "Config",
    "DataBridge",
    "DatabaseHandle",
    "DatabaseRegistry",
    "GUEST_USER_ID",
    "InvalidUserError",
    "LegacyStoreMigrator",
    "MigrationStatus",
    "MigrationValidationError",
    "SchemaStepError",
    "SeedMissingError",
    "StoreKind",
    "StreamChannel",
    "TermstoreError",
    "acquire_history_database",
    "acquire_interactive_database",
    "attach_bridge",
    "close_all",
    "configure",
    "get_all_migration_statuses",
    "get_current_user_id",
    "get_migration_status",
    "set_current_user_id",
]
