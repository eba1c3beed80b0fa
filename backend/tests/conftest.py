"""
Shared fixtures for backend tests.

Every test gets a fresh in-memory SQLite database created from the
production schema in db/database.py, so tests start from a clean slate
(unless a fixture adds rows).  AI calls are replaced with AsyncMock doubles.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
import aiosqlite

from db.database import SCHEMA


@pytest.fixture
async def db():
    """Yield a fresh in-memory SQLite connection with the full schema."""
    async with aiosqlite.connect(":memory:") as conn:
        conn.row_factory = aiosqlite.Row
        await conn.executescript(SCHEMA)
        yield conn


def make_ai(reply=None, side_effect=None, configured=True):
    """
    Build a stand-in for services.ai_client.AIClient.

    ``reply`` is returned from every complete() call; ``side_effect`` may be
    a function (prompt, system=None, max_tokens=...) → str, an exception, or
    a list of values, exactly as with AsyncMock.
    """
    ai = MagicMock()
    ai.configured = configured
    ai.complete = AsyncMock(return_value=reply, side_effect=side_effect)
    return ai


@pytest.fixture
def ai_factory():
    return make_ai
