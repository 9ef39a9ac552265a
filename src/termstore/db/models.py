"""SQLAlchemy models for the tables the migration engine writes.

Every other table in the user stores is defined by the seed databases and
owned by external accessors.
"""

from __future__ import annotations

import time

from sqlalchemy import Integer, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ALIASES = "aliases"
USER_CONFIG = "userConfig"
KEY_VALUE_STORE = "keyValueStore"

# Order matters: the migrator processes sources in this sequence.
DATA_SOURCES: tuple[str, ...] = (ALIASES, USER_CONFIG, KEY_VALUE_STORE)

_EPOCH_NOW = text("(strftime('%s', 'now'))")


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class Base(DeclarativeBase):
    """Base class for all models."""


class MigrationStatus(Base):
    """Per data source record of the legacy store migration."""

    __tablename__ = "indexdb_migration_status"

    data_source: Mapped[str] = mapped_column(Text, primary_key=True)
    migrated: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    migrated_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    record_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_migrated(self) -> bool:
        """True when the row marks the source as migrated."""
        return self.migrated == 1

    def __repr__(self) -> str:
        """Return developer-friendly representation of MigrationStatus."""
        return (
            f"<MigrationStatus {self.data_source!r} migrated={self.migrated} "
            f"count={self.record_count}>"
        )


class Alias(Base):
    """Command alias moved over from the legacy store."""

    __tablename__ = "t_aliases"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    alias: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    command: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        """Return developer-friendly representation of Alias."""
        return f"<Alias {self.alias!r} -> {self.command!r}>"


class KeyValue(Base):
    """Generic key/value row; ``value`` holds serialized JSON."""

    __tablename__ = "key_value_store"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int | None] = mapped_column(Integer, server_default=_EPOCH_NOW)
    updated_at: Mapped[int | None] = mapped_column(Integer, server_default=_EPOCH_NOW)

    def __repr__(self) -> str:
        """Return developer-friendly representation of KeyValue."""
        return f"<KeyValue key={self.key!r}>"
