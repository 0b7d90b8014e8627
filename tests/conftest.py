import asyncio
from typing import AsyncIterator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from lobby.controller import LobbyController
from lobby.models import Base
from lobby.notifier import ChangeNotifier
from lobby.store import RoomStore


class Inbox:
    """Collects the messages a controller sends to its client."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)

    def of_type(self, msg_type: str) -> list:
        return [m for m in self.messages if m["type"] == msg_type]

    def titles(self, msg_type: str) -> list:
        return [m["title"] for m in self.of_type(msg_type)]


@pytest.fixture
def test_db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture()
async def engine(test_db_url: str) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(test_db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def store(engine: AsyncEngine, notifier: ChangeNotifier) -> RoomStore:
    return RoomStore(async_sessionmaker(engine), notifier)


@pytest_asyncio.fixture()
async def make_client(store: RoomStore, notifier: ChangeNotifier):
    """Factory for (controller, inbox) pairs; every controller is closed afterwards."""
    controllers = []

    def factory(**kwargs):
        inbox = Inbox()
        controller = LobbyController(store, notifier, send=inbox, **kwargs)
        controllers.append(controller)
        return controller, inbox

    yield factory
    for controller in controllers:
        await controller.close()


@pytest.fixture
def eventually() -> Callable:
    """Wait until a condition holds, letting background tasks run."""

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@pytest.fixture
def app(test_db_url: str):
    from lobby.main import create_app
    return create_app(test_db_url, debug=True)


@pytest_asyncio.fixture()
async def client(app) -> AsyncIterator[AsyncClient]:
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
