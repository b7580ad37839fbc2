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
import ssl
from typing import Iterable, List, Optional

import websockets


@dataclasses.dataclass(frozen=True)
class Endpoint:
    scheme: str
    port: int

    @property
    def secure(self) -> bool:
        return self.scheme == "wss"

    def url(self, address: str) -> str:
        return f"{self.scheme}://{address}:{self.port}"


# most capable first
DEFAULT_ENDPOINTS = (
    Endpoint("wss", 3001),
    Endpoint("wss", 3000),
    Endpoint("ws", 3000),
)


def endpoints_from_config(entries: Iterable[dict]) -> List[Endpoint]:
    return [Endpoint(str(entry["scheme"]), int(entry["port"])) for entry in entries]


def insecure_ssl_context() -> ssl.SSLContext:
    """
    TVs serve a self-signed certificate issued for no particular hostname.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def open_websocket(url: str, server_name: Optional[str] = None):
    if url.startswith("wss://"):
        return await websockets.connect(
            url,
            ssl=insecure_ssl_context(),
            server_hostname=server_name,
            open_timeout=None,
            max_size=None,
        )
    return await websockets.connect(url, open_timeout=None, max_size=None)
