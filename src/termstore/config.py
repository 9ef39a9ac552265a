"""Environment configuration loaded from .env, env vars, or programmatic input."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Chromium may manage a directory named "databases" for Web SQL storage,
# so the stores live under their own directory name.
DB_DIR_NAME = "chaterm_db"

# Seeds built from the packaged SQL when no prebuilt seed is found
BUILT_SEED_DIR_NAME = "seeds"

DEFAULT_BRIDGE_TIMEOUT = 30.0
DEFAULT_MIGRATION_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


def _default_app_data() -> Path:
    return Path.home() / ".chaterm"


def _parse_float(raw: str | None, default: float) -> float:
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _parse_int(raw: str | None, default: int) -> int:
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    """Storage configuration. Can be built from env, CLI args, or programmatic input."""

    app_data_dir: Path | None = None
    db_dir_name: str = DB_DIR_NAME
    # Set when running from a packaged build; seeds live in <resources>/db/
    resources_path: Path | None = None
    # Explicit seed directory, takes precedence over every other location
    seed_dir: Path | None = None
    bridge_timeout: float = DEFAULT_BRIDGE_TIMEOUT
    migration_attempts: int = DEFAULT_MIGRATION_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY

    def __post_init__(self):
        """Default app_data_dir to ~/.chaterm and coerce path-like fields."""
        if self.app_data_dir is None:
            self.app_data_dir = _default_app_data()
        self.app_data_dir = Path(self.app_data_dir)
        if self.resources_path is not None:
            self.resources_path = Path(self.resources_path)
        if self.seed_dir is not None:
            self.seed_dir = Path(self.seed_dir)

    @property
    def db_root(self) -> Path:
        """Directory holding the per-user store directories."""
        return self.app_data_dir / self.db_dir_name

    @property
    def built_seed_dir(self) -> Path:
        """Writable directory for seeds built from the packaged SQL."""
        return self.app_data_dir / BUILT_SEED_DIR_NAME

    @classmethod
    def from_env(cls) -> Config:
        """Load config from environment variables and .env file."""
        load_dotenv()
        app_data = os.getenv("TERMSTORE_APP_DATA")
        resources = os.getenv("TERMSTORE_RESOURCES_PATH")
        seed_dir = os.getenv("TERMSTORE_SEED_DIR")
        return cls(
            app_data_dir=Path(app_data) if app_data else None,
            resources_path=Path(resources) if resources else None,
            seed_dir=Path(seed_dir) if seed_dir else None,
            bridge_timeout=_parse_float(
                os.getenv("TERMSTORE_BRIDGE_TIMEOUT"), DEFAULT_BRIDGE_TIMEOUT
            ),
            migration_attempts=_parse_int(
                os.getenv("TERMSTORE_MIGRATION_ATTEMPTS"), DEFAULT_MIGRATION_ATTEMPTS
            ),
            retry_delay=_parse_float(
                os.getenv("TERMSTORE_RETRY_DELAY"), DEFAULT_RETRY_DELAY
            ),
        )

    @classmethod
    def from_args(
        cls,
        app_data: str | None = None,
        seed_dir: str | None = None,
        resources: str | None = None,
    ) -> Config:
        """Build config from explicit arguments, falling back to env."""
        env = cls.from_env()
        return cls(
            app_data_dir=Path(app_data) if app_data else env.app_data_dir,
            resources_path=Path(resources) if resources else env.resources_path,
            seed_dir=Path(seed_dir) if seed_dir else env.seed_dir,
            bridge_timeout=env.bridge_timeout,
            migration_attempts=env.migration_attempts,
            retry_delay=env.retry_delay,
        )

    def validate(self) -> list[str]:
        """Return list of validation errors, empty if config is valid."""
        errors = []
        if self.bridge_timeout <= 0:
            errors.append("TERMSTORE_BRIDGE_TIMEOUT must be a positive number of seconds.")
        if self.migration_attempts < 1:
            errors.append("TERMSTORE_MIGRATION_ATTEMPTS must be at least 1.")
        if self.retry_delay < 0:
            errors.append("TERMSTORE_RETRY_DELAY must not be negative.")
        if self.seed_dir is not None and not self.seed_dir.is_dir():
            errors.append(f"Seed directory {self.seed_dir} does not exist.")
        return errors
