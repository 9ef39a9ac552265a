"""Schema migration steps for the user stores.

There is no version table. Each step checks the live schema and only acts
when its change is missing, so the whole list can run on every start.
Steps receive a synchronous connection (``await conn.run_sync(step.apply)``)
that is already inside a transaction; DDL goes through Alembic operations.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection

from termstore.db.models import Alias, KeyValue, MigrationStatus

logger = logging.getLogger(__name__)

ASSETS_UNIQUE_INDEX = "idx_assets_unique_ip_user_port_label_type"
_SUPERSEDED_ASSET_INDEXES = (
    "idx_assets_unique_ip_user_port",
    "idx_assets_unique_ip_user_port_label",
)

# Multiples of 10 leave room for inserting between existing snippets.
SORT_ORDER_GAP = 10

EVICT_DEFAULTS = {"count": 100000, "time": 60 * 60 * 24 * 30}


@dataclass(frozen=True)
class MigrationStep:
    """One self-describing schema change.

    A ``critical`` step is one whose failure could leave data inconsistent;
    its errors propagate instead of being logged and skipped.
    """

    name: str
    apply: Callable[[Connection], None]
    critical: bool = False


# ----------------------------------------------------------------------
# Probes
# ----------------------------------------------------------------------


def _ops(connection: Connection) -> Operations:
    return Operations(MigrationContext.configure(connection))


def has_table(connection: Connection, table: str) -> bool:
    """True if ``table`` exists."""
    return sa.inspect(connection).has_table(table)


def has_column(connection: Connection, table: str, column: str) -> bool:
    """True if ``table`` has ``column``. Raises NoSuchTableError if the table is missing."""
    columns = sa.inspect(connection).get_columns(table)
    return any(col["name"] == column for col in columns)


def has_index(connection: Connection, name: str) -> bool:
    """True if an index called ``name`` exists."""
    row = connection.execute(
        sa.text("SELECT name FROM sqlite_master WHERE type='index' AND name = :name"),
        {"name": name},
    ).first()
    return row is not None


def _add_column_if_missing(connection: Connection, table: str, column: sa.Column) -> bool:
    if has_column(connection, table, column.name):
        return False
    _ops(connection).add_column(table, column)
    logger.info("Added %s column to %s", column.name, table)
    return True


def _backfill_uuid(connection: Connection, table: str, key: str) -> int:
    rows = connection.execute(
        sa.text(f"SELECT {key} FROM {table} WHERE uuid IS NULL OR uuid = ''")
    ).all()
    if not rows:
        return 0
    connection.execute(
        sa.text(f"UPDATE {table} SET uuid = :uuid WHERE {key} = :key"),
        [{"uuid": str(uuid.uuid4()), "key": row[0]} for row in rows],
    )
    logger.info("Backfilled uuid for %d existing %s records", len(rows), table)
    return len(rows)


# ----------------------------------------------------------------------
# Interactive store
# ----------------------------------------------------------------------


def upgrade_assets_columns(connection: Connection) -> None:
    """Columns added to t_assets over time."""
    _add_column_if_missing(
        connection, "t_assets", sa.Column("asset_type", sa.Text(), server_default="person")
    )
    _add_column_if_missing(
        connection,
        "t_assets",
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )
    _add_column_if_missing(
        connection, "t_assets", sa.Column("need_proxy", sa.Integer(), server_default=sa.text("0"))
    )
    _add_column_if_missing(
        connection, "t_assets", sa.Column("proxy_name", sa.Text(), server_default="")
    )


def upgrade_asset_chains(connection: Connection) -> None:
    """Sync identifiers on key chains; every chain needs a uuid."""
    _add_column_if_missing(connection, "t_asset_chains", sa.Column("uuid", sa.Text()))
    _add_column_if_missing(
        connection,
        "t_asset_chains",
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )
    _backfill_uuid(connection, "t_asset_chains", "key_chain_id")


def add_assets_unique_index(connection: Connection) -> None:
    """Unique (asset_ip, username, port, label, asset_type) on t_assets.

    Existing duplicates are collapsed to the row with the highest id first,
    otherwise the index cannot be created on dirty data.
    """
    if not has_table(connection, "t_assets"):
        logger.warning("t_assets missing, skipping unique index")
        return

    op = _ops(connection)
    for name in _SUPERSEDED_ASSET_INDEXES:
        if has_index(connection, name):
            op.drop_index(name, table_name="t_assets")
            logger.info("Dropped superseded index %s", name)

    if has_index(connection, ASSETS_UNIQUE_INDEX):
        return

    op.execute(
        sa.text(
            "UPDATE t_assets SET asset_type = 'person' "
            "WHERE asset_type IS NULL OR asset_type = ''"
        )
    )
    removed = connection.execute(
        sa.text(
            "DELETE FROM t_assets WHERE id NOT IN ("
            " SELECT MAX(id) FROM t_assets"
            " GROUP BY asset_ip, username, port, label, asset_type"
            ")"
        )
    ).rowcount
    if removed:
        logger.warning("Removed %d duplicate t_assets rows before adding unique index", removed)

    op.create_index(
        ASSETS_UNIQUE_INDEX,
        "t_assets",
        ["asset_ip", "username", "port", "label", "asset_type"],
        unique=True,
    )
    logger.info("Added unique constraint for asset_ip + username + port + label + asset_type")


def upgrade_snippet_sort_order(connection: Connection) -> None:
    """sort_order on user_snippet_v1, seeded from creation order."""
    if not _add_column_if_missing(
        connection,
        "user_snippet_v1",
        sa.Column("sort_order", sa.Integer(), server_default=sa.text("0")),
    ):
        return
    ids = connection.execute(
        sa.text("SELECT id FROM user_snippet_v1 ORDER BY created_at ASC, id ASC")
    ).scalars().all()
    if ids:
        connection.execute(
            sa.text("UPDATE user_snippet_v1 SET sort_order = :sort_order WHERE id = :id"),
            [{"sort_order": (i + 1) * SORT_ORDER_GAP, "id": id_} for i, id_ in enumerate(ids)],
        )
        logger.info("Initialized sort_order for %d existing records", len(ids))


def upgrade_task_metadata_todos(connection: Connection) -> None:
    """todos column on agent_task_metadata_v1, '[]' for existing tasks."""
    _add_column_if_missing(connection, "agent_task_metadata_v1", sa.Column("todos", sa.Text()))
    updated = connection.execute(
        sa.text("UPDATE agent_task_metadata_v1 SET todos = '[]' WHERE todos IS NULL")
    ).rowcount
    if updated:
        logger.info("Initialized todos for %d existing tasks", updated)


def create_mcp_tool_state_table(connection: Connection) -> None:
    """Enabled/disabled state per MCP server tool."""
    if has_table(connection, "mcp_tool_state"):
        return
    op = _ops(connection)
    op.create_table(
        "mcp_tool_state",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("server_name", sa.Text(), nullable=False),
        sa.Column("tool_name", sa.Text(), nullable=False),
        sa.Column("enabled", sa.Integer(), server_default=sa.text("1")),
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))")),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))")),
        sa.UniqueConstraint("server_name", "tool_name"),
    )
    op.create_index("idx_mcp_tool_state_server", "mcp_tool_state", ["server_name"])
    op.create_index("idx_mcp_tool_state_enabled", "mcp_tool_state", ["enabled"])
    logger.info("mcp_tool_state table created successfully")


def add_mcp_tool_call_column(connection: Connection) -> None:
    """MCP tool call details (server, tool, arguments) as JSON."""
    _add_column_if_missing(
        connection, "agent_ui_messages_v1", sa.Column("mcp_tool_call_data", sa.Text())
    )


def add_content_parts_column(connection: Connection) -> None:
    """Structured user content (chips + text) so mentions can be restored."""
    _add_column_if_missing(
        connection, "agent_ui_messages_v1", sa.Column("content_parts", sa.Text())
    )


def upgrade_snippet_groups(connection: Connection) -> None:
    """Snippet grouping and sync identifiers on user_snippet_v1."""
    _add_column_if_missing(connection, "user_snippet_v1", sa.Column("group_uuid", sa.Text()))
    if _add_column_if_missing(connection, "user_snippet_v1", sa.Column("uuid", sa.Text())):
        _backfill_uuid(connection, "user_snippet_v1", "id")


def create_skills_state_table(connection: Connection) -> None:
    """Enabled/disabled state and config per skill."""
    if has_table(connection, "skills_state"):
        return
    now_ms = sa.text("(strftime('%s', 'now') * 1000)")
    op = _ops(connection)
    op.create_table(
        "skills_state",
        sa.Column("skill_name", sa.Text(), primary_key=True),
        sa.Column("enabled", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("config", sa.Text()),
        sa.Column("last_used", sa.Integer()),
        sa.Column("created_at", sa.Integer(), nullable=False, server_default=now_ms),
        sa.Column("updated_at", sa.Integer(), nullable=False, server_default=now_ms),
    )
    op.create_index("idx_skills_state_enabled", "skills_state", ["enabled"])
    logger.info("skills_state table created successfully")


def add_message_index_column(connection: Connection) -> None:
    """Groups content blocks belonging to the same API message."""
    _add_column_if_missing(
        connection,
        "agent_api_conversation_history_v1",
        sa.Column("message_index", sa.Integer()),
    )


def add_bastion_comment_column(connection: Connection) -> None:
    """Plugin-provided comments kept apart from user-edited ones."""
    _add_column_if_missing(
        connection, "t_organization_assets", sa.Column("bastion_comment", sa.Text())
    )


def create_legacy_store_tables(connection: Connection) -> None:
    """Destination tables of the legacy store migration."""
    tables = [Alias.__table__, KeyValue.__table__, MigrationStatus.__table__]
    missing = [t for t in tables if not has_table(connection, t.name)]
    if missing:
        Alias.metadata.create_all(connection, tables=missing, checkfirst=True)
        logger.info("Created legacy store tables: %s", ", ".join(t.name for t in missing))


# ----------------------------------------------------------------------
# Terminal history store
# ----------------------------------------------------------------------


def create_evict_config_table(connection: Connection) -> None:
    """Eviction thresholds read by the command history evictor."""
    if not has_table(connection, "linux_commands_evict"):
        _ops(connection).create_table(
            "linux_commands_evict",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("evict_type", sa.Text(), nullable=False, unique=True),
            sa.Column("evict_value", sa.Integer(), nullable=False),
            sa.Column("evict_current_value", sa.Integer(), server_default=sa.text("0")),
        )
        logger.info("linux_commands_evict table created successfully")

    for evict_type, value in EVICT_DEFAULTS.items():
        exists = connection.execute(
            sa.text("SELECT 1 FROM linux_commands_evict WHERE evict_type = :t"),
            {"t": evict_type},
        ).first()
        if exists is None:
            connection.execute(
                sa.text(
                    "INSERT INTO linux_commands_evict"
                    " (evict_type, evict_value, evict_current_value) "
                    "VALUES (:t, :v, 0)"
                ),
                {"t": evict_type, "v": value},
            )
            logger.info("Inserted default %s eviction config", evict_type)


# Order matters: asset columns before the unique index that covers them.
INTERACTIVE_STEPS: tuple[MigrationStep, ...] = (
    MigrationStep("assets_columns", upgrade_assets_columns),
    MigrationStep("asset_chains_uuid", upgrade_asset_chains),
    MigrationStep("assets_unique_index", add_assets_unique_index, critical=True),
    MigrationStep("snippet_sort_order", upgrade_snippet_sort_order),
    MigrationStep("task_metadata_todos", upgrade_task_metadata_todos),
    MigrationStep("mcp_tool_state_table", create_mcp_tool_state_table),
    MigrationStep("mcp_tool_call_column", add_mcp_tool_call_column),
    MigrationStep("content_parts_column", add_content_parts_column),
    MigrationStep("snippet_groups", upgrade_snippet_groups),
    MigrationStep("skills_state_table", create_skills_state_table),
    MigrationStep("message_index_column", add_message_index_column),
    MigrationStep("bastion_comment_column", add_bastion_comment_column),
    MigrationStep("legacy_store_tables", create_legacy_store_tables),
)

HISTORY_STEPS: tuple[MigrationStep, ...] = (
    MigrationStep("evict_config_table", create_evict_config_table),
)
