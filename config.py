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

import logging
from pathlib import Path
from typing import Union

from voluptuous import Schema, Required, Optional, All, Range, Length, In, Coerce
import voluptuous.error
import aiofiles
import tomlkit
import tomlkit.exceptions


class ConfigurationLoadError(Exception): pass


DEFAULT_ENDPOINTS = [
    {"scheme": "wss", "port": 3001},
    {"scheme": "wss", "port": 3000},
    {"scheme": "ws", "port": 3000},
]

Seconds = All(Coerce(float), Range(min=0, min_included=False))
Port = All(int, Range(min=0, max=65535))


class Config:
    config: tomlkit.TOMLDocument
    settings: dict
    config_opened: bool = False

    def __init__(self, config_location: Union[str, Path]):
        self.config_location = Path(config_location)

        self.config_schema = Schema({
            Optional('server', default={}): {
                Optional('host', default="127.0.0.1"): All(str, Length(min=1)),
                Optional('port', default=8080): Port,
            },
            Optional('tv', default={}): {
                Optional('credential_file', default="./tv_config.json"): All(str, Length(min=1)),
                Optional('auto_connect', default=True): bool,
                Optional('transport_timeout', default=12.0): Seconds,
                Optional('request_timeout', default=10.0): Seconds,
                Optional('pairing_timeout', default=30.0): Seconds,
                Optional('click_duration', default=0.05): Seconds,
                Optional('endpoints', default=DEFAULT_ENDPOINTS): All([{
                    Required('scheme'): In(["ws", "wss"]),
                    Required('port'): Port,
                }], Length(min=1)),
            },
        })

    async def initialize(self):
        try:
            async with aiofiles.open(self.config_location, 'r') as config_file:
                file_data = await config_file.read()
                self.config = tomlkit.parse(file_data)
                logging.debug("Loaded Configuration without toml format error")
                logging.debug("Validating against Schema.")
                self.settings = self.config_schema(self.config.unwrap())
                self.config_opened = True
                logging.debug("Validated against Schema.")
        except FileNotFoundError as e:
            logging.exception(e)
            logging.warning(
                f"Could not find {self.config_location}. Copy from .example/config.toml to {self.config_location}")
            raise ConfigurationLoadError() from e
        except IOError as e:
            logging.exception(e)
            logging.warning(f"Could not open file {self.config_location}")
            raise ConfigurationLoadError() from e
        except tomlkit.exceptions.ParseError as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} is invalid")
            raise ConfigurationLoadError() from e
        except voluptuous.error.MultipleInvalid as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} does not match expected format")
            logging.warning(f"Issue configuration item: {e.path}")
            raise ConfigurationLoadError() from e

        logging.info(f"Configuration loaded.")
