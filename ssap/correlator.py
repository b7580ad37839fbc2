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
import dataclasses
import itertools
import logging
from typing import Callable, Dict, List, Optional

from ssap.errors import NotConnected, RequestTimeout

DEFAULT_REQUEST_TIMEOUT = 10.0
SETTLED_HISTORY = 256

MessageHandler = Callable[[dict], None]


@dataclasses.dataclass
class PendingRequest:
    future: asyncio.Future
    deadline: float
    timer: asyncio.TimerHandle
    is_final: Optional[Callable[[dict], bool]] = None


class RequestCorrelator:
    """
    Matches responses to the requests that caused them.

    Only touched from the event loop, which is what serializes access to the two tables.
    Pending entries resolve once and are dropped, either by a response or by their timer.
    Subscriptions keep receiving every response for their identifier until cleared.
    The most recently settled identifiers are remembered, so a late or duplicate answer
    is consumed without effect instead of passing for an unsolicited update.
    """

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._pending: Dict[str, PendingRequest] = dict()
        self._subscriptions: Dict[str, MessageHandler] = dict()
        self._settled: Dict[str, None] = dict()

    @property
    def pending_ids(self) -> List[str]:
        return list(self._pending)

    @property
    def subscription_ids(self) -> List[str]:
        return list(self._subscriptions)

    def next_id(self) -> str:
        return f"msg_{next(self._ids)}"

    def expect(self, request_id: str, timeout: Optional[float] = None,
               is_final: Optional[Callable[[dict], bool]] = None) -> asyncio.Future:
        if request_id in self._pending or request_id in self._subscriptions:
            raise ValueError(f"Request {request_id} is already outstanding")
        self._settled.pop(request_id, None)
        loop = asyncio.get_running_loop()
        timeout = self.timeout if timeout is None else timeout
        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = PendingRequest(future, loop.time() + timeout, timer, is_final)
        return future

    def subscribe(self, request_id: str, handler: MessageHandler) -> None:
        if request_id in self._pending or request_id in self._subscriptions:
            raise ValueError(f"Request {request_id} is already outstanding")
        self._subscriptions[request_id] = handler

    def unsubscribe(self, request_id: str) -> None:
        self._subscriptions.pop(request_id, None)

    def dispatch(self, message: dict) -> bool:
        request_id = message.get("id")
        if request_id is None:
            return False

        handler = self._subscriptions.get(request_id)
        if handler is not None:
            try:
                handler(message)
            except Exception as e:
                logging.exception(e)
                logging.warning(f"Subscription handler for {request_id} failed")
            return True

        pending = self._pending.get(request_id)
        if pending is None:
            if request_id in self._settled:
                logging.debug(f"Ignoring late answer for {request_id}")
                return True
            return False

        if pending.is_final is not None and not pending.is_final(message):
            logging.debug(f"Interim response for {request_id}: {message}")
            return True

        del self._pending[request_id]
        self._settle(request_id)
        pending.timer.cancel()
        if not pending.future.done():
            pending.future.set_result(message)
        return True

    def discard(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        self._settle(request_id)
        pending.timer.cancel()
        pending.future.cancel()

    def clear(self, reason: Optional[Exception] = None) -> None:
        pending, self._pending = self._pending, dict()
        self._subscriptions.clear()
        self._settled.clear()
        for request_id, entry in pending.items():
            entry.timer.cancel()
            if entry.future.done():
                continue
            entry.future.set_exception(reason if reason is not None else NotConnected("Disconnected"))
            # nobody may be awaiting anymore
            entry.future.add_done_callback(_consume_exception)

    def _expire(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        self._settle(request_id)
        logging.debug(f"Request {request_id} timed out")
        if not pending.future.done():
            pending.future.set_exception(RequestTimeout(request_id))

    def _settle(self, request_id: str) -> None:
        self._settled[request_id] = None
        if len(self._settled) > SETTLED_HISTORY:
            del self._settled[next(iter(self._settled))]


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
