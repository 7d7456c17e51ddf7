import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import json
import uuid
import pytest
from sanic_testing import TestManager

from duo_chat.server.broadcaster import Broadcaster
from duo_chat.server.config import ServerConfig
from duo_chat.server.factory import create_app
from duo_chat.server.presence import PresenceTracker
from duo_chat.server.sessions import SessionManager
from duo_chat.server.storage import JsonDocument
from duo_chat.server.stores import MessageStore, UserRegistry


class FakeWebsocket:
    def __init__(self, fail: bool = False):
        self.sent: list[str] = []
        self.fail = fail

    async def send(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("gone")
        self.sent.append(data)

    def events(self) -> list[tuple[str, object]]:
        frames = [json.loads(raw) for raw in self.sent]
        return [(f["event"], f["data"]) for f in frames]

    def named(self, event: str) -> list[object]:
        return [data for name, data in self.events() if name == event]


@pytest.fixture
def config(tmp_path):
    return ServerConfig(host="127.0.0.1", port=3000, data_dir=tmp_path / "data")


@pytest.fixture
def registry(config):
    registry = UserRegistry(JsonDocument(config.users_file, {}), config.users)
    registry.load()
    return registry


@pytest.fixture
def message_store(config):
    store = MessageStore(JsonDocument(config.messages_file, []))
    store.load()
    return store


@pytest.fixture
def sessions(registry):
    return SessionManager(registry)


@pytest.fixture
def presence(registry):
    return PresenceTracker(registry)


@pytest.fixture
def broadcaster(registry, sessions, presence, message_store):
    return Broadcaster(registry, sessions, presence, message_store)


@pytest.fixture
def app(config):
    app = create_app(config, name=f"test-{uuid.uuid4().hex[:8]}")
    TestManager(app)
    return app


@pytest.fixture
def test_client(app):
    return app.test_client
