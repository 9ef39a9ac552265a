"""On-disk layout of the user stores and relocation of legacy files."""

from __future__ import annotations

import enum
import logging
import os
from pathlib import Path

from termstore.config import Config
from termstore.errors import SeedMissingError

logger = logging.getLogger(__name__)

# Source tree location of the packaged seeds (development builds)
PACKAGE_SEED_DIR = Path(__file__).resolve().parent.parent / "seeds"


class StoreKind(str, enum.Enum):
    """The two independently versioned stores each user owns."""

    INTERACTIVE = "interactive"
    TERMINAL_HISTORY = "terminal-history"

    @property
    def filename(self) -> str:
        """Name of the user's database file."""
        return _FILENAMES[self]

    @property
    def seed_filename(self) -> str:
        """Name of the packaged seed database."""
        return _SEED_FILENAMES[self]


_FILENAMES = {
    StoreKind.INTERACTIVE: "chaterm_data.db",
    StoreKind.TERMINAL_HISTORY: "complete_data.db",
}

_SEED_FILENAMES = {
    StoreKind.INTERACTIVE: "init_chaterm.db",
    StoreKind.TERMINAL_HISTORY: "init_data.db",
}


def user_dir(config: Config, user_id: int) -> Path:
    """Per-user directory holding both stores."""
    return config.db_root / str(user_id)


def user_database_path(config: Config, user_id: int, kind: StoreKind) -> Path:
    """Path of ``kind`` store for ``user_id``."""
    return user_dir(config, user_id) / kind.filename


def legacy_database_path(config: Config, kind: StoreKind) -> Path:
    """Path the store had before databases were split per user."""
    return config.db_root / kind.filename


def ensure_user_dir(config: Config, user_id: int) -> Path:
    """Create the per-user directory if needed and return it."""
    path = user_dir(config, user_id)
    path.mkdir(parents=True, exist_ok=True)
    return path


def relocate(config: Config, user_id: int, kind: StoreKind) -> bool:
    """Move a legacy single-file store into the user's directory.

    Returns True if a file was moved. A missing legacy file, an existing
    per-user file, or a failed move all return False so the caller falls
    back to a fresh install.
    """
    legacy_path = legacy_database_path(config, kind)
    target_path = user_database_path(config, user_id, kind)

    if not legacy_path.exists():
        return False
    if target_path.exists():
        logger.info(
            "Legacy %s database found at %s but %s already exists, leaving it",
            kind.value, legacy_path, target_path,
        )
        return False

    logger.info("Found legacy %s database at: %s", kind.value, legacy_path)
    logger.info("Migrating to user directory: %s", target_path)
    try:
        ensure_user_dir(config, user_id)
        os.rename(legacy_path, target_path)
    except OSError as e:
        logger.error("Failed to migrate legacy %s database: %s", kind.value, e)
        return False

    logger.info("Successfully migrated legacy %s database for user %s", kind.value, user_id)
    return True


def seed_candidates(config: Config, kind: StoreKind) -> list[Path]:
    """Seed locations in resolution order."""
    name = kind.seed_filename
    candidates = []
    if config.seed_dir is not None:
        candidates.append(config.seed_dir / name)
    if config.resources_path is not None:
        candidates.append(config.resources_path / "db" / name)
    candidates.append(PACKAGE_SEED_DIR / name)
    # Test environments
    candidates.append(Path.cwd() / "test_data" / name)
    return candidates


def resolve_seed_path(config: Config, kind: StoreKind) -> Path:
    """Return the first existing seed database for ``kind``.

    Raises:
        SeedMissingError: No candidate location holds the seed.
    """
    candidates = seed_candidates(config, kind)
    for path in candidates:
        if path.is_file():
            return path
    searched = ", ".join(str(p) for p in candidates)
    raise SeedMissingError(f"Initial database ({kind.seed_filename}) not found in: {searched}")
