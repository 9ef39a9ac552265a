"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from termstore.config import Config
from termstore.db.paths import StoreKind
from termstore.db.registry import DatabaseRegistry, set_current_user_id
from termstore.db.seed import build_all_seeds


class FakeBridge:
    """Stand-in for DataBridge that answers from a dict.

    ``failures`` maps a source to exceptions raised, one per request,
    before the data is returned.
    """

    def __init__(self, data: dict | None = None) -> None:
        self.data = dict(data or {})
        self.failures: dict[str, list[Exception]] = {}
        self.requests: list[str] = []

    async def request_legacy_data(self, source: str, timeout: float | None = None):
        self.requests.append(source)
        pending = self.failures.get(source)
        if pending:
            raise pending.pop(0)
        return self.data.get(source)


@pytest.fixture(autouse=True)
def _reset_current_user():
    yield
    set_current_user_id(None)


@pytest.fixture
async def seed_dir(tmp_path: Path) -> Path:
    """Provide a directory holding freshly built seed databases."""
    d = tmp_path / "seeds"
    await build_all_seeds(d)
    return d


@pytest.fixture
def config(tmp_path: Path, seed_dir: Path) -> Config:
    """Provide a Config rooted in a temp app data directory."""
    return Config(
        app_data_dir=tmp_path / "app",
        seed_dir=seed_dir,
        bridge_timeout=1.0,
        migration_attempts=3,
        retry_delay=0,
    )


@pytest.fixture
def fake_bridge() -> FakeBridge:
    """Provide a bridge whose legacy store is empty."""
    return FakeBridge()


@pytest.fixture
async def registry(config: Config):
    """Provide a registry without a bridge, closed after the test."""
    reg = DatabaseRegistry(config)
    yield reg
    await reg.close_all()


@pytest.fixture
async def interactive_db(registry: DatabaseRegistry):
    """Provide the interactive store of user 1."""
    return await registry.acquire(1, StoreKind.INTERACTIVE)
