"""
TvRemote
Copyright (C) 2024 thiccaxe

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import asyncio
import enum
import logging
from typing import Optional

import websockets
from websockets.protocol import State as WebsocketState

from ssap.errors import AuxiliaryChannelUnavailable
from ssap.pointer_frames import encode_move, encode_press, encode_release

DEFAULT_CLICK_DURATION = 0.05
DEFAULT_OPEN_TIMEOUT = 12.0


class PointerChannelState(enum.Enum):
    ABSENT = "absent"
    CONNECTING = "connecting"
    OPEN = "open"


class PointerChannel:
    """
    Low latency pointer socket, opened next to the main session once it is ready.

    Everything here is best effort: frames sent while the socket is absent are dropped and a
    socket that goes away only takes pointer control with it.
    """

    def __init__(self, connector, click_duration: float = DEFAULT_CLICK_DURATION,
                 open_timeout: float = DEFAULT_OPEN_TIMEOUT):
        self._connector = connector
        self._open_timeout = open_timeout
        self._click_duration = click_duration
        self._websocket = None
        self._state = PointerChannelState.ABSENT
        self._drain_task: Optional[asyncio.Task] = None
        self._release_tasks: set = set()

    @property
    def state(self) -> PointerChannelState:
        return self._state

    def is_open(self) -> bool:
        return (self._state is PointerChannelState.OPEN and self._websocket is not None
                and self._websocket.state is WebsocketState.OPEN)

    async def open(self, socket_path: str, server_name: Optional[str] = None) -> None:
        await self.close()
        self._state = PointerChannelState.CONNECTING
        logging.debug(f"Opening pointer socket {socket_path}")
        try:
            websocket = await asyncio.wait_for(self._connector(socket_path, server_name), self._open_timeout)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            self._state = PointerChannelState.ABSENT
            raise AuxiliaryChannelUnavailable(f"Pointer socket failed at {socket_path}: {e}") from e

        self._websocket = websocket
        self._state = PointerChannelState.OPEN
        self._drain_task = asyncio.create_task(self._drain(websocket))
        logging.info("Pointer socket open")

    async def _drain(self, websocket) -> None:
        try:
            async for _ in websocket:
                pass
        except websockets.exceptions.ConnectionClosedError as e:
            logging.warning(f"Pointer WS error: {e}")
        if self._websocket is websocket:
            logging.debug("Pointer socket closed")
            self._websocket = None
            self._state = PointerChannelState.ABSENT

    async def move(self, dx: float, dy: float) -> None:
        await self._send(encode_move(dx, dy))

    async def click(self) -> None:
        if not self.is_open():
            return
        await self._send(encode_press())
        task = asyncio.create_task(self._release_later())
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    async def _release_later(self) -> None:
        await asyncio.sleep(self._click_duration)
        await self._send(encode_release())

    async def _send(self, frame: bytes) -> None:
        if not self.is_open():
            return
        websocket = self._websocket
        try:
            await websocket.send(frame)
        except websockets.exceptions.ConnectionClosed:
            logging.debug("Pointer socket closed while sending, dropping frame")
            if self._websocket is websocket:
                self._websocket = None
                self._state = PointerChannelState.ABSENT

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        drain_task, self._drain_task = self._drain_task, None
        self._state = PointerChannelState.ABSENT
        for task in list(self._release_tasks):
            task.cancel()
        self._release_tasks.clear()
        if drain_task is not None and not drain_task.done():
            drain_task.cancel()
        if websocket is not None:
            await websocket.close()
