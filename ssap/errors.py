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

from typing import List, Tuple


class TvRemoteError(Exception): pass


class TransportError(TvRemoteError): pass


class HandshakeRejected(TvRemoteError): pass


class NotConnected(TvRemoteError): pass


class AuxiliaryChannelUnavailable(TvRemoteError): pass


class InvalidMessage(TvRemoteError): pass


class RequestFailed(TvRemoteError): pass


class RequestTimeout(TvRemoteError):
    def __init__(self, request_id: str, message: str = None):
        super().__init__(message or f"Request {request_id} timed out")
        self.request_id = request_id


class ConnectFailed(TransportError):
    """
    every candidate endpoint failed; attempts holds (url, reason) in the order tried
    """

    def __init__(self, attempts: List[Tuple[str, str]]):
        self.attempts = list(attempts)
        joined = " | ".join(f"{url} -> {reason}" for url, reason in self.attempts)
        super().__init__(f"Failed to connect to TV. Attempts: {joined}")
