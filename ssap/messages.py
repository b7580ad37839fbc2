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

import copy
import enum
import json
from typing import Optional

from voluptuous import Schema, Required, Optional as SchemaOptional, Any, All, Coerce, ALLOW_EXTRA
import voluptuous.error

from ssap.errors import InvalidMessage


class MessageType(str, enum.Enum):
    REQUEST = "request"
    RESPONSE = "response"
    SUBSCRIBE = "subscribe"
    REGISTER = "register"
    REGISTERED = "registered"
    ERROR = "error"


FOREGROUND_APP_URI = "ssap://com.webos.applicationManager/getForegroundAppInfo"
VOLUME_URI = "ssap://audio/getVolume"
POINTER_SOCKET_URI = "ssap://com.webos.service.networkinput/getPointerInputSocket"
BUTTON_URI = "ssap://com.webos.service.networkinput/sendButton"
TEXT_URI = "ssap://com.webos.service.ime/sendText"

CREDENTIAL_FIELD = "client-key"

PERMISSIONS = [
    "LAUNCH",
    "LAUNCH_WEBAPP",
    "APP_TO_APP",
    "CONTROL_AUDIO",
    "CONTROL_INPUT_MEDIA_PLAYBACK",
    "CONTROL_MOUSE_AND_KEYBOARD",
    "CONTROL_INPUT_TEXT",
    "CONTROL_INPUT_JOYSTICK",
    "READ_CURRENT_CHANNEL",
    "READ_INSTALLED_APPS",
    "READ_RUNNING_APPS",
    "READ_INPUT_DEVICE_LIST",
    "READ_TV_CURRENT_TIME",
    "READ_NETWORK_STATE",
    "READ_POWER_STATE",
    "READ_APP_STATUS",
    "READ_UPDATE_INFO",
    "READ_COUNTRY_INFO",
]

HANDSHAKE_PAYLOAD = {
    "forcePairing": False,
    "pairingType": "PROMPT",
    "manifest": {
        "manifestVersion": 1,
        "appVersion": "1.1",
        "signed": {
            "appId": "com.lge.test",
            "vendorId": "com.lge",
            "created": "20140509",
            "localizedAppNames": {
                "": "TV Remote",
            },
            "localizedVendorNames": {
                "": "LG Electronics",
            },
            "permissions": ["TEST_SECURE", "CONTROL_INPUT_TEXT", "CONTROL_MOUSE_AND_KEYBOARD",
                            "READ_INSTALLED_APPS", "READ_LGE_SDX", "READ_NOTIFICATIONS", "SEARCH",
                            "WRITE_SETTINGS", "WRITE_NOTIFICATION_ALERT", "CONTROL_POWER",
                            "READ_CURRENT_CHANNEL", "READ_RUNNING_APPS", "READ_UPDATE_INFO",
                            "UPDATE_FROM_REMOTE_APP", "READ_LGE_TV_INPUT_EVENTS", "READ_TV_CURRENT_TIME"],
            "serial": "2f930e2d2cfe083771f68e4fe7bb07",
        },
        "permissions": PERMISSIONS,
    },
}

MESSAGE_SCHEMA = Schema({
    Required("type"): str,
    SchemaOptional("id"): Any(None, All(Any(str, int), Coerce(str))),
    SchemaOptional("payload"): Any(None, dict),
    SchemaOptional("error"): Any(None, str),
}, extra=ALLOW_EXTRA)


def build_handshake_payload(credential: Optional[str] = None) -> dict:
    payload = copy.deepcopy(HANDSHAKE_PAYLOAD)
    if credential:
        payload[CREDENTIAL_FIELD] = credential
    return payload


def parse_message(raw) -> dict:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidMessage(f"Not JSON: {e}") from e
    if not isinstance(message, dict):
        raise InvalidMessage(f"Expected a JSON object, got {type(message).__name__}")
    try:
        return MESSAGE_SCHEMA(message)
    except voluptuous.error.MultipleInvalid as e:
        raise InvalidMessage(f"Malformed message ({e.path}): {e.msg}") from e


def returned_credential(message: dict) -> Optional[str]:
    payload = message.get("payload") or {}
    credential = payload.get(CREDENTIAL_FIELD)
    if isinstance(credential, str) and len(credential) > 0:
        return credential
    return None


def is_handshake_final(message: dict) -> bool:
    """
    The device answers "registered" once paired, but some firmware only sends a "response"
    carrying a fresh client-key. Both count as success; anything else before that (such as
    the acknowledgment that a pairing prompt is on screen) is interim.
    """
    if message.get("type") in (MessageType.REGISTERED.value, MessageType.ERROR.value):
        return True
    return returned_credential(message) is not None
