from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FakeWebSocket, eventually
from server_data import ServerData
from ssap.errors import NotConnected
from tv_state import DiscoveredTv, SessionState, StatusAggregator
from websocket_server import WebsocketServer

SETTINGS = {"server": {"host": "127.0.0.1", "port": 0}}


class RecordingConnection:

    def __init__(self):
        self.calls = []
        self.status = StatusAggregator()
        self.listener = None

    def set_status_callback(self, callback):
        self.listener = callback
        self.status.set_listener(callback)

    def get_status(self):
        return self.status.snapshot()

    async def move_pointer(self, dx, dy):
        self.calls.append(("move_pointer", dx, dy))

    async def click(self):
        self.calls.append(("click",))

    async def press_key(self, name):
        if self.status.state is not SessionState.READY:
            raise NotConnected("Not connected")
        self.calls.append(("press_key", name))

    async def send_text(self, text):
        self.calls.append(("send_text", text))

    async def connect(self, address):
        self.calls.append(("connect", address))
        self.status.set_address(address)
        self.status.set_state(SessionState.READY)


def replies(client: FakeWebSocket) -> list[dict]:
    return [json.loads(item) for item in client.sent]


async def run_client(server: WebsocketServer, *messages) -> FakeWebSocket:
    client = FakeWebSocket("ws://control")
    for message in messages:
        client.feed(message if isinstance(message, str) else json.dumps(message))
    handler = asyncio.create_task(server.handler(client))
    await asyncio.sleep(0.01)
    client.drop()
    await handler
    return client


@pytest.mark.asyncio
async def test_new_client_gets_status_first() -> None:
    server = WebsocketServer(SETTINGS, ServerData(), RecordingConnection())
    client = await run_client(server)
    assert replies(client) == [{"type": "status", "data": {
        "sessionState": "disconnected", "deviceAddress": None, "foregroundApp": None, "volume": None, "muted": None,
    }}]


@pytest.mark.asyncio
async def test_commands_reach_connection() -> None:
    connection = RecordingConnection()
    connection.status.set_state(SessionState.READY)
    server = WebsocketServer(SETTINGS, ServerData(), connection)

    await run_client(
        server,
        {"type": "mouse_move", "dx": "1.5", "dy": -2},
        {"type": "mouse_click"},
        {"type": "send_button", "key": "HOME"},
        {"type": "send_text", "text": "hello"},
    )

    assert connection.calls == [
        ("move_pointer", 1.5, -2.0),
        ("click",),
        ("press_key", "HOME"),
        ("send_text", "hello"),
    ]


@pytest.mark.asyncio
async def test_errors_are_reported_to_the_client() -> None:
    server = WebsocketServer(SETTINGS, ServerData(), RecordingConnection())

    client = await run_client(
        server,
        "{not json",
        {"type": "teleport"},
        {"type": "send_button"},
        {"type": "send_button", "key": "HOME"},
        {"type": "discover"},
    )

    errors = [reply["message"] for reply in replies(client) if reply["type"] == "error"]
    assert errors[0] == "Malformed message"
    assert errors[1] == "Unknown message type"
    assert errors[2].startswith("Malformed send_button message")
    assert errors[3] == "Not connected"
    assert errors[4] == "Discovery is not available"


@pytest.mark.asyncio
async def test_discover_uses_collaborator() -> None:
    async def discoverer(timeout):
        assert timeout == 2.0
        return [DiscoveredTv("Living Room", "10.0.0.5", "uuid:1234")]

    server = WebsocketServer(SETTINGS, ServerData(discoverer), RecordingConnection())
    client = await run_client(server, {"type": "discover", "timeout": 2})

    assert replies(client)[-1] == {
        "type": "discovered",
        "tvs": [{"name": "Living Room", "ip": "10.0.0.5", "identifier": "uuid:1234"}],
    }


@pytest.mark.asyncio
async def test_failing_discovery_is_reported_and_client_stays() -> None:
    async def discoverer(timeout):
        raise OSError("Network is unreachable")

    server = WebsocketServer(SETTINGS, ServerData(discoverer), RecordingConnection())
    client = await run_client(server, {"type": "discover"}, {"type": "get_status"})

    assert replies(client)[1] == {"type": "error", "message": "Discovery failed: Network is unreachable"}
    assert replies(client)[-1]["type"] == "status"
    assert len(replies(client)) == 3


@pytest.mark.asyncio
async def test_status_changes_are_broadcast() -> None:
    connection = RecordingConnection()
    data = ServerData()
    server = WebsocketServer(SETTINGS, data, connection)
    first, second = FakeWebSocket("ws://a"), FakeWebSocket("ws://b")
    data.connected_clients.update({first, second})

    await server.broadcast_status(connection.get_status())
    second.drop()
    connection.status.set_state(SessionState.CONNECTING)
    await eventually(lambda: len(first.sent) == 2)

    assert json.loads(first.sent[-1])["data"]["sessionState"] == "connecting"
    assert second not in data.connected_clients


@pytest.mark.asyncio
async def test_connect_request_and_status_query() -> None:
    connection = RecordingConnection()
    server = WebsocketServer(SETTINGS, ServerData(), connection)

    client = await run_client(server, {"type": "connect_tv", "ip": "10.0.0.5"}, {"type": "get_status"})

    assert ("connect", "10.0.0.5") in connection.calls
    assert replies(client)[-1]["data"]["sessionState"] == "ready"
    assert replies(client)[-1]["data"]["deviceAddress"] == "10.0.0.5"
