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
import contextlib
import json
import logging
from typing import Callable, List, Optional, Sequence, Tuple

import websockets
from websockets.protocol import State as WebsocketState

from credential_store import CredentialStore, DeviceCredential
from pointer_channel import PointerChannel, DEFAULT_CLICK_DURATION
from ssap.correlator import RequestCorrelator, DEFAULT_REQUEST_TIMEOUT
from ssap.errors import (
    TvRemoteError,
    TransportError,
    HandshakeRejected,
    RequestTimeout,
    NotConnected,
    AuxiliaryChannelUnavailable,
    InvalidMessage,
    RequestFailed,
    ConnectFailed,
)
from ssap.messages import (
    MessageType,
    FOREGROUND_APP_URI,
    VOLUME_URI,
    POINTER_SOCKET_URI,
    BUTTON_URI,
    TEXT_URI,
    build_handshake_payload,
    parse_message,
    returned_credential,
    is_handshake_final,
)
from ssap.transport import Endpoint, DEFAULT_ENDPOINTS, open_websocket
from tv_state import SessionState, StatusAggregator, StatusListener, StatusSnapshot

DEFAULT_TRANSPORT_TIMEOUT = 12.0
# bounded by someone walking over to the TV, not by the network
DEFAULT_PAIRING_TIMEOUT = 30.0


class TvConnection:
    """
    One session with one TV: disconnected -> connecting -> pairing -> ready, and back to
    disconnected on close, failure or disconnect().

    connect() and disconnect() are serialized by a lock. Requests may be sent concurrently;
    the correlator tables are only touched from the event loop. Incoming frames are handled
    in arrival order by a single reader task per socket.
    """

    def __init__(self, store: CredentialStore, connector=open_websocket,
                 endpoints: Sequence[Endpoint] = DEFAULT_ENDPOINTS,
                 transport_timeout: float = DEFAULT_TRANSPORT_TIMEOUT,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
                 pairing_timeout: float = DEFAULT_PAIRING_TIMEOUT,
                 click_duration: float = DEFAULT_CLICK_DURATION):
        self._store = store
        self._connector = connector
        self._endpoints = list(endpoints)
        self._transport_timeout = transport_timeout
        self._pairing_timeout = pairing_timeout
        self._websocket = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pointer_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._address: Optional[str] = None
        self._credential: Optional[str] = None
        self._correlator = RequestCorrelator(request_timeout)
        self._status = StatusAggregator()
        self._pointer = PointerChannel(connector, click_duration, transport_timeout)
        self._lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._status.state

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    @property
    def pointer(self) -> PointerChannel:
        return self._pointer

    def set_status_callback(self, callback: Optional[StatusListener]) -> None:
        self._status.set_listener(callback)

    def get_status(self) -> StatusSnapshot:
        return self._status.snapshot()

    def _transport_open(self) -> bool:
        return self._websocket is not None and self._websocket.state is WebsocketState.OPEN

    # connection lifecycle

    async def connect(self, address: str) -> None:
        async with self._lock:
            task = asyncio.create_task(self._connect(address))
            self._connect_task = task
            try:
                await task
            except asyncio.CancelledError:
                await self._teardown()
                self._status.reset()
                self._status.set_state(SessionState.DISCONNECTED)
                if self._connect_task is task:
                    raise
                raise NotConnected("Connection attempt aborted") from None
            finally:
                if self._connect_task is task:
                    self._connect_task = None

    async def _connect(self, address: str) -> None:
        if self._websocket is not None or self.state is not SessionState.DISCONNECTED:
            await self._teardown()
            self._status.reset()

        self._address = address
        self._credential = None
        self._status.set_address(address)
        self._status.set_state(SessionState.CONNECTING)

        record = await self._store.load()
        if record is not None and record.device_address == address:
            logging.debug(f"Using stored credential for {address}")
            self._credential = record.credential

        attempts: List[Tuple[str, str]] = []
        for endpoint in self._endpoints:
            url = endpoint.url(address)
            if attempts:
                self._status.set_state(SessionState.CONNECTING)
            logging.info(f"Trying {url}...")
            try:
                await self._open_session(url)
                return
            except HandshakeRejected as e:
                logging.warning(f"Pairing rejected at {url}: {e}")
                await self._teardown()
                self._status.set_state(SessionState.DISCONNECTED)
                raise
            except TransportError as e:
                logging.info(f"Failed: {e}")
                attempts.append((url, str(e)))
                await self._teardown()

        self._status.set_state(SessionState.DISCONNECTED)
        raise ConnectFailed(attempts)

    async def disconnect(self) -> None:
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            # a pairing prompt can hold the lock for a long time
            logging.info("Aborting connection attempt")
            task.cancel()
        async with self._lock:
            await self._teardown()
            self._status.reset()
            self._status.set_state(SessionState.DISCONNECTED)

    async def _open_session(self, url: str) -> None:
        try:
            websocket = await asyncio.wait_for(self._connector(url, self._address), self._transport_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Connection timed out at {url}") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"WebSocket connection failed at {url}: {e}") from e

        self._websocket = websocket
        self._reader_task = asyncio.create_task(self._read_loop(websocket, url))
        self._status.set_state(SessionState.PAIRING)
        logging.info("Connected, registering...")
        await self._register()

    async def _register(self) -> None:
        request_id = self._correlator.next_id()
        future = self._correlator.expect(request_id, self._pairing_timeout, is_final=is_handshake_final)
        logging.info("Waiting for pairing response (check TV for prompt)...")
        try:
            await self._transmit({
                "id": request_id,
                "type": MessageType.REGISTER.value,
                "payload": build_handshake_payload(self._credential),
            })
            response = await future
        except RequestTimeout as e:
            raise TransportError("Registration timed out - check TV for pairing prompt") from e
        except NotConnected as e:
            raise TransportError(str(e)) from e
        finally:
            self._correlator.discard(request_id)

        if response.get("type") == MessageType.ERROR.value:
            raise HandshakeRejected(response.get("error") or "Registration failed")

        credential = returned_credential(response)
        if credential is not None:
            self._credential = credential
            await self._persist_credential()

        self._status.set_state(SessionState.READY)
        logging.info(f"Paired with {self._address}")
        self._pointer_task = asyncio.create_task(self._open_pointer_channel())
        await self._subscribe_to_status()

    async def _persist_credential(self) -> None:
        try:
            await self._store.save(DeviceCredential(self._address, self._credential))
        except (IOError, TypeError, ValueError) as e:
            logging.exception(e)
            logging.warning("Could not save credential, pairing will be requested again next time")

    async def _teardown(self, reason: Optional[Exception] = None) -> None:
        websocket, self._websocket = self._websocket, None
        reader_task, self._reader_task = self._reader_task, None
        pointer_task, self._pointer_task = self._pointer_task, None

        self._correlator.clear(reason if reason is not None else NotConnected("Disconnected"))

        for task in (pointer_task, reader_task):
            if task is None or task is asyncio.current_task() or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._pointer.close()
        if websocket is not None:
            await websocket.close()

    # main channel

    async def _read_loop(self, websocket, url: str) -> None:
        try:
            async for raw in websocket:
                try:
                    self._handle_message(raw)
                except Exception as e:
                    logging.exception(e)
                    logging.warning("Failed to handle main WS message, continuing")
        except websockets.exceptions.ConnectionClosedError as e:
            logging.warning(f"Main WS error: {e}")
        await self._connection_lost(websocket, url)

    def _handle_message(self, raw) -> None:
        try:
            message = parse_message(raw)
        except InvalidMessage as e:
            logging.warning(f"Failed to parse main WS message: {e}")
            return

        if self._correlator.dispatch(message):
            return

        # unsolicited update
        self._status.apply_update(message.get("payload"))

    async def _connection_lost(self, websocket, url: str) -> None:
        if self._websocket is not websocket:
            return
        logging.info(f"Socket closed at {url}")
        # state changes happen before the first await, a newer session may start during teardown
        if self.state is SessionState.READY:
            self._status.reset()
            self._status.set_state(SessionState.DISCONNECTED)
        await self._teardown(TransportError(f"Socket closed at {url}"))

    async def _transmit(self, message: dict) -> None:
        if not self._transport_open():
            raise NotConnected("Main WebSocket not connected")
        try:
            await self._websocket.send(json.dumps(message))
        except websockets.exceptions.ConnectionClosed as e:
            raise NotConnected(f"Main WebSocket closed: {e}") from e

    async def send(self, message: dict, timeout: Optional[float] = None) -> dict:
        if not self._transport_open():
            raise NotConnected("Main WebSocket not connected")
        message = dict(message)
        if not message.get("id"):
            message["id"] = self._correlator.next_id()
        request_id = str(message["id"])
        future = self._correlator.expect(request_id, timeout)
        try:
            await self._transmit(message)
        except TvRemoteError:
            self._correlator.discard(request_id)
            raise
        return await future

    async def subscribe(self, uri: str, handler: Callable[[dict], None], payload: Optional[dict] = None) -> str:
        request_id = self._correlator.next_id()
        self._correlator.subscribe(request_id, handler)
        message = {"id": request_id, "type": MessageType.SUBSCRIBE.value, "uri": uri}
        if payload is not None:
            message["payload"] = payload
        try:
            await self._transmit(message)
        except TvRemoteError:
            self._correlator.unsubscribe(request_id)
            raise
        return request_id

    async def _subscribe_to_status(self) -> None:
        try:
            await self.subscribe(FOREGROUND_APP_URI, self._on_foreground_app)
            await self.subscribe(VOLUME_URI, self._on_volume)
        except TvRemoteError as e:
            logging.error(f"Failed to subscribe to status: {e}")

    def _on_foreground_app(self, message: dict) -> None:
        if message.get("type") == MessageType.ERROR.value:
            logging.warning(f"Foreground app subscription error: {message.get('error')}")
            return
        self._status.apply_foreground_app(message.get("payload"))

    def _on_volume(self, message: dict) -> None:
        if message.get("type") == MessageType.ERROR.value:
            logging.warning(f"Volume subscription error: {message.get('error')}")
            return
        self._status.apply_volume(message.get("payload"))

    # pointer channel

    async def _open_pointer_channel(self) -> None:
        try:
            response = await self.send({"type": MessageType.REQUEST.value, "uri": POINTER_SOCKET_URI})
            socket_path = (response.get("payload") or {}).get("socketPath")
            if not socket_path:
                raise AuxiliaryChannelUnavailable("No socketPath in pointer response")
            await self._pointer.open(socket_path, self._address)
        except TvRemoteError as e:
            # mouse control won't work, everything else does
            logging.warning(f"Pointer socket setup failed: {e}")

    # commands

    def _require_ready(self) -> None:
        if self.state is not SessionState.READY:
            raise NotConnected("Not connected")

    async def _command(self, uri: str, payload: dict) -> dict:
        self._require_ready()
        response = await self.send({"type": MessageType.REQUEST.value, "uri": uri, "payload": payload})
        if response.get("type") == MessageType.ERROR.value:
            raise RequestFailed(response.get("error") or f"{uri} failed")
        return response

    async def press_key(self, name: str) -> dict:
        return await self._command(BUTTON_URI, {"name": name})

    async def send_text(self, text: str) -> dict:
        return await self._command(TEXT_URI, {"text": text, "replace": 0})

    async def move_pointer(self, dx: float, dy: float) -> None:
        await self._pointer.move(dx, dy)

    async def click(self) -> None:
        await self._pointer.click()
