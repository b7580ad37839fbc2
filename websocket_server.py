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

import dataclasses
import json
import logging

import websockets
from voluptuous import Schema, Required, All, Coerce, Length, Range, ALLOW_EXTRA
import voluptuous.error

from server_data import ServerData
from ssap.errors import TvRemoteError
from tv_connection import TvConnection
from tv_state import StatusSnapshot

DISCOVERY_TIMEOUT = 5.0

PACKET_SCHEMAS = {
    "mouse_move": Schema({
        Required("dx"): Coerce(float),
        Required("dy"): Coerce(float),
    }, extra=ALLOW_EXTRA),
    "mouse_click": Schema({}, extra=ALLOW_EXTRA),
    "send_button": Schema({Required("key"): All(str, Length(min=1))}, extra=ALLOW_EXTRA),
    "send_text": Schema({Required("text"): str}, extra=ALLOW_EXTRA),
    "connect_tv": Schema({Required("ip"): All(str, Length(min=1))}, extra=ALLOW_EXTRA),
    "get_status": Schema({}, extra=ALLOW_EXTRA),
    "discover": Schema({"timeout": All(Coerce(float), Range(min=0.1, max=60))}, extra=ALLOW_EXTRA),
}


def status_message(snapshot: StatusSnapshot) -> str:
    return json.dumps({"type": "status", "data": snapshot.as_dict()})


def error_message(message: str) -> str:
    return json.dumps({"type": "error", "message": message})


class WebsocketServer:
    """
    Control socket for browser front ends: forwards their commands to the TV connection and
    pushes every status change back to all of them.
    """

    def __init__(self, config, data: ServerData, connection: TvConnection):
        self._config = config
        self._data = data
        self._connection = connection
        self._websocket_server = None
        self._connection.set_status_callback(self.broadcast_status)

    async def handler(self, websocket):
        self._data.connected_clients.add(websocket)
        logging.debug("Control client connected")
        try:
            await websocket.send(status_message(self._connection.get_status()))
            async for message in websocket:
                if isinstance(message, str):
                    await self._parse_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            logging.debug(f"Websocket connection closed")
        finally:
            self._data.connected_clients.discard(websocket)
            logging.debug("Control client disconnected")

    async def broadcast_status(self, snapshot: StatusSnapshot) -> None:
        data = status_message(snapshot)
        for websocket in list(self._data.connected_clients):
            try:
                await websocket.send(data)
            except websockets.exceptions.ConnectionClosed:
                self._data.connected_clients.discard(websocket)

    async def _parse_message(self, websocket, message: str):
        try:
            packet = json.loads(message)
        except json.JSONDecodeError as e:
            logging.warning(f"WebSocket sent non-JSON data; details:")
            logging.exception(e)
            await websocket.send(error_message("Malformed message"))
            return

        logging.debug(f"Received message: {packet}")
        if not isinstance(packet, dict) or packet.get("type") not in PACKET_SCHEMAS:
            logging.warning(f"Malformed packet - unknown type")
            await websocket.send(error_message("Unknown message type"))
            return

        try:
            packet = PACKET_SCHEMAS[packet["type"]](packet)
        except voluptuous.error.MultipleInvalid as e:
            logging.warning(f"Malformed {packet['type']} packet: {e}")
            await websocket.send(error_message(f"Malformed {packet['type']} message: {e.msg}"))
            return

        try:
            await self._handle_packet(websocket, packet)
        except TvRemoteError as e:
            logging.warning(f"{packet['type']} failed: {e}")
            await websocket.send(error_message(str(e)))

    async def _handle_packet(self, websocket, packet: dict) -> None:
        packet_type = packet["type"]
        if packet_type == "mouse_move":
            await self._connection.move_pointer(packet["dx"], packet["dy"])
        elif packet_type == "mouse_click":
            await self._connection.click()
        elif packet_type == "send_button":
            await self._connection.press_key(packet["key"])
        elif packet_type == "send_text":
            await self._connection.send_text(packet["text"])
        elif packet_type == "connect_tv":
            await self._connection.connect(packet["ip"])
        elif packet_type == "get_status":
            await websocket.send(status_message(self._connection.get_status()))
        elif packet_type == "discover":
            await self._discover(websocket, packet.get("timeout", DISCOVERY_TIMEOUT))

    async def _discover(self, websocket, timeout: float) -> None:
        if self._data.discoverer is None:
            await websocket.send(error_message("Discovery is not available"))
            return
        try:
            tvs = await self._data.discoverer(timeout)
        except Exception as e:
            logging.exception(e)
            logging.warning("Discovery failed")
            await websocket.send(error_message(f"Discovery failed: {e}"))
            return
        await websocket.send(json.dumps({
            "type": "discovered",
            "tvs": [dataclasses.asdict(tv) for tv in tvs],
        }))

    async def __aenter__(self):
        # serve() wants a running loop, so it is only created here
        self._websocket_server = websockets.serve(self.handler, self._config["server"]["host"],
                                                  int(self._config["server"]["port"]))
        logging.debug(f"Starting websocket server on {self._config['server']['host']}:{self._config['server']['port']}")
        return await self._websocket_server.__aenter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._websocket_server is not None:
            logging.debug(f"Stopping websocket server")
            return await self._websocket_server.__aexit__(exc_type, exc_val, exc_tb)
