"""Shared fixtures."""
import pytest
import pytest_asyncio

from marketpulse.core.db.session import create_engine, create_session_factory, init_db
from tests.fakes import FrozenClock


@pytest.fixture
def clock():
    return FrozenClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketpulse.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()
