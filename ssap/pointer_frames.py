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

"""
Frames understood by the pointer input socket.

Every frame starts with an event kind byte followed by a button or axis byte. Motion
frames carry two little-endian signed 16 bit deltas, button frames two zero bytes.
"""

import enum
import math
import struct


class PointerEvent(enum.IntEnum):
    MOVE = 1
    PRESS = 2
    RELEASE = 3


LEFT_BUTTON = 1

INT16_MIN = -32768
INT16_MAX = 32767

_MOVE_FRAME = struct.Struct("<BBhh")
_BUTTON_FRAME = struct.Struct("<BBh")


def round_delta(value: float) -> int:
    if not math.isfinite(value):
        return 0
    # half-up, so -0.5 goes to 0 and 0.5 to 1
    rounded = math.floor(float(value) + 0.5)
    return max(INT16_MIN, min(INT16_MAX, rounded))


def encode_move(dx: float, dy: float) -> bytes:
    return _MOVE_FRAME.pack(PointerEvent.MOVE, 0, round_delta(dx), round_delta(dy))


def encode_press(button: int = LEFT_BUTTON) -> bytes:
    return _BUTTON_FRAME.pack(PointerEvent.PRESS, button, 0)


def encode_release(button: int = LEFT_BUTTON) -> bytes:
    return _BUTTON_FRAME.pack(PointerEvent.RELEASE, button, 0)
