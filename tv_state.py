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
import enum
import inspect
import logging
from typing import Any, Callable, Optional


class SessionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PAIRING = "pairing"
    READY = "ready"


@dataclasses.dataclass(frozen=True)
class StatusSnapshot:
    session_state: SessionState
    device_address: Optional[str] = None
    foreground_app: Optional[str] = None
    volume: Optional[int] = None
    muted: Optional[bool] = None

    def as_dict(self) -> dict:
        return {
            "sessionState": self.session_state.value,
            "deviceAddress": self.device_address,
            "foregroundApp": self.foreground_app,
            "volume": self.volume,
            "muted": self.muted,
        }


@dataclasses.dataclass
class DiscoveredTv:
    name: str
    ip: str
    identifier: str


StatusListener = Callable[[StatusSnapshot], Any]


class StatusAggregator:
    """
    Folds session transitions, subscription responses and unsolicited device updates into one
    snapshot and hands a fresh copy of it to the listener after each observable change.

    Updates may be partial: a field missing from a payload keeps its previous value.
    """

    def __init__(self):
        self._state = SessionState.DISCONNECTED
        self._address: Optional[str] = None
        self._foreground_app: Optional[str] = None
        self._volume: Optional[int] = None
        self._muted: Optional[bool] = None
        self._listener: Optional[StatusListener] = None
        self._listener_tasks: set = set()

    @property
    def state(self) -> SessionState:
        return self._state

    def set_listener(self, listener: Optional[StatusListener]) -> None:
        self._listener = listener

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            session_state=self._state,
            device_address=self._address,
            foreground_app=self._foreground_app,
            volume=self._volume,
            muted=self._muted,
        )

    def set_address(self, address: Optional[str]) -> None:
        self._address = address

    def set_state(self, state: SessionState) -> None:
        logging.debug(f"Session {self._state.value} -> {state.value}")
        self._state = state
        self._notify()

    def reset(self) -> None:
        self._foreground_app = None
        self._volume = None
        self._muted = None

    def apply_foreground_app(self, payload: Optional[dict]) -> bool:
        if not isinstance(payload, dict):
            return False
        app_id = payload.get("appId")
        if not isinstance(app_id, str) or not app_id or app_id == self._foreground_app:
            return False
        self._foreground_app = app_id
        self._notify()
        return True

    def apply_volume(self, payload: Optional[dict]) -> bool:
        if not isinstance(payload, dict):
            return False
        # newer firmware nests the values
        if isinstance(payload.get("volumeStatus"), dict):
            payload = payload["volumeStatus"]
        changed = False
        volume = payload.get("volume")
        if isinstance(volume, (int, float)) and not isinstance(volume, bool) and volume != self._volume:
            self._volume = volume
            changed = True
        muted = payload.get("muted", payload.get("muteStatus"))
        if isinstance(muted, bool) and muted != self._muted:
            self._muted = muted
            changed = True
        if changed:
            self._notify()
        return changed

    def apply_update(self, payload: Optional[dict]) -> bool:
        app_changed = self.apply_foreground_app(payload)
        volume_changed = self.apply_volume(payload)
        return app_changed or volume_changed

    def _notify(self) -> None:
        if self._listener is None:
            return
        snapshot = self.snapshot()
        if inspect.iscoroutinefunction(self._listener):
            task = asyncio.get_running_loop().create_task(self._listener(snapshot))
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_done)
            return
        try:
            self._listener(snapshot)
        except Exception as e:
            logging.exception(e)
            logging.warning("Status listener failed")

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logging.warning(f"Status listener failed: {task.exception()!r}")
