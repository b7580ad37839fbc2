from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable, Optional

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State

from credential_store import DeviceCredential
from ssap.messages import POINTER_SOCKET_URI

_CLOSED = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets connection."""

    def __init__(self, url: str, responder: Optional[Callable[["FakeWebSocket", dict], Iterable[dict]]] = None):
        self.url = url
        self.state = State.OPEN
        self.sent: list = []
        self.responder = responder
        self._incoming: asyncio.Queue = asyncio.Queue()

    @property
    def sent_json(self) -> list[dict]:
        return [json.loads(item) for item in self.sent if isinstance(item, str)]

    @property
    def sent_binary(self) -> list[bytes]:
        return [item for item in self.sent if isinstance(item, bytes)]

    async def send(self, data) -> None:
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)
        if self.responder is not None and isinstance(data, str):
            for reply in self.responder(self, json.loads(data)) or ():
                self.feed(reply)

    def feed(self, message) -> None:
        self._incoming.put_nowait(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def drop(self) -> None:
        """Remote side goes away."""
        self.state = State.CLOSED
        self._incoming.put_nowait(_CLOSED)

    async def close(self) -> None:
        if self.state is State.OPEN:
            self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeTv:
    """
    Answers SSAP requests the way a TV does. `register_reply` builds the handshake answer;
    return None from it to leave the handshake unanswered.
    """

    def __init__(self, address: str = "10.0.0.5", register_reply=None, refuse: Iterable[str] = ()):
        self.address = address
        self.register_reply = register_reply or (lambda message: {"type": "registered", "payload": {}})
        self.refuse = set(refuse)
        self.sockets: list[FakeWebSocket] = []
        self.connect_calls: list[str] = []

    @property
    def main(self) -> FakeWebSocket:
        return [socket for socket in self.sockets if not socket.url.endswith("/pointer")][-1]

    @property
    def pointer_sockets(self) -> list[FakeWebSocket]:
        return [socket for socket in self.sockets if socket.url.endswith("/pointer")]

    def respond(self, socket: FakeWebSocket, message: dict):
        request_id = message.get("id")
        if message["type"] == "register":
            reply = self.register_reply(message)
            if reply is None:
                return []
            return [dict(reply, id=request_id)]
        if message["type"] == "subscribe":
            return []
        if message.get("uri") == POINTER_SOCKET_URI:
            return [{"id": request_id, "type": "response",
                     "payload": {"returnValue": True, "socketPath": f"ws://{self.address}:3000/pointer"}}]
        return [{"id": request_id, "type": "response", "payload": {"returnValue": True}}]

    async def connect(self, url: str, server_name: Optional[str] = None) -> FakeWebSocket:
        self.connect_calls.append(url)
        if url in self.refuse or "*" in self.refuse:
            raise ConnectionRefusedError(f"Connection refused: {url}")
        socket = FakeWebSocket(url, None if url.endswith("/pointer") else self.respond)
        self.sockets.append(socket)
        return socket


class MemoryCredentialStore:

    def __init__(self, record: Optional[DeviceCredential] = None, fail_save: bool = False):
        self.record = record
        self.fail_save = fail_save
        self.saved: list[DeviceCredential] = []

    async def load(self) -> Optional[DeviceCredential]:
        return self.record

    async def save(self, record: DeviceCredential) -> None:
        if self.fail_save:
            raise OSError("disk full")
        self.saved.append(record)
        self.record = record


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_tv() -> FakeTv:
    return FakeTv()


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()
