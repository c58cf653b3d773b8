# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""
Engine-wide settings, with defaults overridable from the environment.
"""
import os
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, field_validator

ENV_PREFIX = "COMPOSETEST_"


class EngineSettings(BaseModel):
    """
    Settings shared by the CLI and the pytest plugin.
    """
    compose_command: Optional[List[str]] = None  # auto-detected when unset
    state_dir: Path = Path("build/compose-state")
    command_timeout_seconds: Optional[float] = 300.0
    default_timeout_seconds: float = 60.0
    default_poll_seconds: float = 2.0
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "EngineSettings":
        """
        Builds settings from ``COMPOSETEST_*`` environment variables.

        :param environ: Environment to read; defaults to ``os.environ``.
        :param overrides: Explicit values that win over the environment.
        :return: The settings.
        """
        environ = os.environ if environ is None else environ
        values = {}
        command = environ.get(f"{ENV_PREFIX}COMPOSE_COMMAND")
        if command:
            values["compose_command"] = command.split()
        mapping = {
            "state_dir": "STATE_DIR",
            "command_timeout_seconds": "COMMAND_TIMEOUT",
            "default_timeout_seconds": "WAIT_TIMEOUT",
            "default_poll_seconds": "POLL_INTERVAL",
            "log_level": "LOG_LEVEL",
        }
        for field, suffix in mapping.items():
            raw = environ.get(ENV_PREFIX + suffix)
            if raw:
                values[field] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
