from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest_asyncio

from database.base import Database
from database.migrations.runner import run_migrations

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "database" / "migrations"


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(url=f"sqlite:///{tmp_path / 'modmail.db'}")
    await database.connect()
    await run_migrations(database, MIGRATIONS_DIR)
    yield database
    await database.close()
