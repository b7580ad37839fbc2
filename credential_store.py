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
from pathlib import Path
from typing import Optional, Union

import aiofiles
from voluptuous import Schema, Required, All, Length, REMOVE_EXTRA
import voluptuous.error


@dataclasses.dataclass(frozen=True)
class DeviceCredential:
    device_address: str
    credential: str

    def as_dict(self) -> dict:
        return {"deviceAddress": self.device_address, "credential": self.credential}


class CredentialStore:
    """
    Keeps the client-key handed out by the TV after pairing, so the next connection to the
    same address does not prompt again.
    """

    def __init__(self, location: Union[str, Path]):
        self.location = Path(location)
        self.schema = Schema({
            Required('deviceAddress'): All(str, Length(min=1)),
            Required('credential'): All(str, Length(min=1)),
        }, extra=REMOVE_EXTRA)

    async def load(self) -> Optional[DeviceCredential]:
        try:
            async with aiofiles.open(self.location, 'r') as credential_file:
                file_data = await credential_file.read()
            record = self.schema(json.loads(file_data))
        except FileNotFoundError:
            logging.debug(f"No stored credential at {self.location}")
            return None
        except IOError as e:
            logging.exception(e)
            logging.warning(f"Could not open file {self.location}")
            return None
        except json.JSONDecodeError as e:
            logging.warning(f"Credential file {self.location} is not valid JSON: {e}")
            return None
        except voluptuous.error.Invalid as e:
            logging.warning(f"Credential file {self.location} does not match expected format")
            logging.warning(f"Issue credential item: {e.path}")
            return None

        return DeviceCredential(record['deviceAddress'], record['credential'])

    async def save(self, record: DeviceCredential) -> None:
        async with aiofiles.open(self.location, 'w') as credential_file:
            await credential_file.write(json.dumps(record.as_dict(), indent=2))
        logging.debug(f"Credential for {record.device_address} saved to {self.location}")
