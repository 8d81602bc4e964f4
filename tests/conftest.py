import asyncio

import pytest
import pytest_asyncio

from estate_rpc.config import Settings
from estate_rpc.storage import Database
from estate_rpc.transport.memory import InMemoryBroker


async def _eventually(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually():
    """Awaitable that yields to the loop until ``predicate()`` holds."""
    return _eventually


@pytest_asyncio.fixture
async def broker():
    b = InMemoryBroker()
    await b.connect()
    yield b
    b.available = True
    await b.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=str(tmp_path / "estate.db"),
        rpc_timeout=2,
        access_token_secret="test-access",
        refresh_token_secret="test-refresh",
        rentcast_api_key="rc-key",
        google_maps_api_key="gm-key",
    )


@pytest.fixture
def db(settings):
    return Database(settings.database_path)
