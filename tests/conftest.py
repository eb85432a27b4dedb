import pytest
import pytest_asyncio

from backend import PresenceBackend
from hub import ChatHub
from tests.fakes import FakeWebSocket


@pytest.fixture
def backend():
    return PresenceBackend()


@pytest_asyncio.fixture
async def hub(backend):
    chat_hub = ChatHub(backend)
    yield chat_hub
    chat_hub.reset()


@pytest.fixture
def connect(hub):
    async def _connect(connection_id: str, fail: bool = False, websocket=None):
        websocket = websocket or FakeWebSocket(fail=fail)
        await hub.on_connected(connection_id, websocket)
        return websocket

    return _connect
