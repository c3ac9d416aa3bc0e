"""Shared fixtures: a throwaway SQLite database and hikari mocks."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from requestbot.db import models  # noqa: F401
from requestbot.shared.database import Base

from .fakes import make_message


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Session factory over a temporary-file SQLite database.

    A file is used rather than ``:memory:`` so concurrent sessions see the
    same database through separate connections.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'requestbot.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def rest() -> AsyncMock:
    """Mock hikari REST client; sent messages get id 9000."""
    rest = AsyncMock()
    rest.create_message.return_value = make_message(9000)
    rest.fetch_channel.return_value = MagicMock(id=777)
    return rest
