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
import logging
import os

from config import Config, ConfigurationLoadError
from credential_store import CredentialStore
from logger import setup_logging
from server_data import ServerData
from ssap.errors import TvRemoteError
from ssap.transport import endpoints_from_config
from tv_connection import TvConnection
from websocket_server import WebsocketServer


class TvRemote:

    def __init__(self, settings, data: ServerData = None, connector=None):
        self._settings = settings
        self._data = data if data is not None else ServerData()
        tv = self._settings["tv"]
        self._store = CredentialStore(tv["credential_file"])
        connection_options = dict(
            endpoints=endpoints_from_config(tv["endpoints"]),
            transport_timeout=tv["transport_timeout"],
            request_timeout=tv["request_timeout"],
            pairing_timeout=tv["pairing_timeout"],
            click_duration=tv["click_duration"],
        )
        if connector is not None:
            connection_options["connector"] = connector
        self._connection = TvConnection(self._store, **connection_options)
        self._websocket_server = WebsocketServer(self._settings, self._data, self._connection)

    @property
    def connection(self) -> TvConnection:
        return self._connection

    async def auto_connect(self):
        record = await self._store.load()
        if record is None:
            return
        logging.info(f"Found saved config for TV at {record.device_address}, auto-connecting...")
        try:
            await self._connection.connect(record.device_address)
        except TvRemoteError as e:
            logging.warning(f"Auto-connect failed: {e}")

    async def begin(self):
        logging.info("Starting TV Remote")
        auto_connect_task = None
        async with self._websocket_server:
            server = self._settings["server"]
            logging.info(f"Server running at ws://{server['host']}:{server['port']}")
            if self._settings["tv"]["auto_connect"]:
                auto_connect_task = asyncio.create_task(self.auto_connect())
            try:
                logging.info("Ctrl^C to quit")
                await self._data.shutdown_event.wait()
            except asyncio.CancelledError:
                logging.info("Cancelled ...")
            finally:
                logging.info("Stopping Server ...")
                if auto_connect_task is not None and not auto_connect_task.done():
                    auto_connect_task.cancel()
                await self._connection.disconnect()


async def main():
    logging.info("Starting tv remote ...")

    config = Config(os.environ.get("TV_REMOTE_CONFIG", "./config.toml"))

    try:
        await config.initialize()
    except ConfigurationLoadError:
        logging.error("Could not load configuration. Exiting")
        return

    remote = TvRemote(config.settings)
    await remote.begin()


def run():
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Cancelled ...")


if __name__ == "__main__":
    run()
