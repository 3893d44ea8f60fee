"""
Shared fixtures for the signaling relay tests.
"""

import asyncio
import json

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app import create_app
from registry import RoomRegistry
from relay import RelayHandler

TEST_QUEUE_SIZE = 8


class FakeConnection:
    """Stands in for a WebSocket: records every frame the relay sends to it."""

    def __init__(self):
        self.raw = []
        self.sent = []

    async def send_text(self, data: str):
        self.raw.append(data)
        self.sent.append(json.loads(data))

    def of_type(self, message_type: str):
        return [m for m in self.sent if m["type"] == message_type]


class BrokenConnection(FakeConnection):
    async def send_text(self, data: str):
        raise RuntimeError("socket already closed")


class StallingConnection(FakeConnection):
    """Takes the first frame, then never finishes another send, like a client that stopped reading."""

    async def send_text(self, data: str):
        if self.sent:
            await asyncio.sleep(3600)
        await super().send_text(data)


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest_asyncio.fixture
async def relay(registry):
    handler = RelayHandler(registry, queue_size=TEST_QUEUE_SIZE)
    yield handler
    for peer in list(handler.peers.values()):
        await handler.disconnect(peer)


@pytest.fixture
def make_peer(relay):
    """Open a relay connection backed by a FakeConnection. Returns (peer, connection).

    Must be called from inside a running event loop (i.e. an async test).
    """

    def _make(connection_id=None, connection_cls=FakeConnection):
        connection = connection_cls()
        peer = relay.connect(connection.send_text, connection_id=connection_id)
        return peer, connection

    return _make


@pytest.fixture
def join_frame():
    def _frame(room_id: str, display_name: str) -> str:
        return json.dumps({"type": "join", "roomId": room_id, "displayName": display_name})

    return _frame


@pytest.fixture
def signal_frame():
    def _frame(message_type: str, target_id: str, payload) -> str:
        return json.dumps({"type": message_type, "targetId": target_id, "payload": payload})

    return _frame


@pytest.fixture
def client():
    app = create_app(allowed_origins=["http://localhost:3000"])
    with TestClient(app) as test_client:
        yield test_client
