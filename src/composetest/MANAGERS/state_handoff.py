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
Handing the state of a running stack to the tests that use it.

The state is written as JSON to ``<state_dir>/<stack_name>-state.json`` and,
within the same process, kept in a StateRegistry. Tests in another process
find the file through the ``COMPOSE_STATE_FILE`` environment variable.
"""
import logging
import os
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..MODELS.service_info import StackState

logger = logging.getLogger(__name__)

STATE_FILE_ENV = "COMPOSE_STATE_FILE"
# Set by `composetest run --lifecycle method`; names a StackSpec JSON file
STACK_SPEC_ENV = "COMPOSETEST_STACK_SPEC"


class StateRegistry:
    """
    In-process lookup of published stack states by stack name.
    """
    def __init__(self):
        self._states: Dict[str, StackState] = {}

    def put(self, state: StackState) -> None:
        self._states[state.stack_name] = state

    def get(self, stack_name: str) -> StackState:
        try:
            return self._states[stack_name]
        except KeyError:
            raise KeyError(f"No running stack named '{stack_name}'") from None

    def remove(self, stack_name: str) -> None:
        self._states.pop(stack_name, None)

    def __contains__(self, stack_name: object) -> bool:
        return stack_name in self._states

    def __iter__(self) -> Iterator[str]:
        return iter(dict(self._states))

    def __len__(self) -> int:
        return len(self._states)


class StateHandoff:
    """
    Publishes stack states for test code.
    """
    def __init__(self, state_dir: Union[str, Path], registry: Optional[StateRegistry] = None):
        """
        :param state_dir: Directory state files are written to.
        :param registry: In-process registry updated alongside the files.
        """
        self.state_dir = Path(state_dir)
        self.registry = registry if registry is not None else StateRegistry()

    def path_for(self, stack_name: str) -> Path:
        return self.state_dir / f"{stack_name}-state.json"

    def publish(self, state: StackState) -> Path:
        """
        Writes a state file, replacing any earlier one for the same stack.

        :param state: State of the started stack.
        :return: Path of the state file.
        """
        path = self.path_for(state.stack_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_stack_state(state), encoding="utf-8")
        self.registry.put(state)
        logger.info("State file generated: %s", path)
        return path

    def retract(self, stack_name: str) -> None:
        """
        Forgets the in-process state of a stack that was torn down.
        The file is kept for post-mortem inspection.
        """
        self.registry.remove(stack_name)


def dump_stack_state(state: StackState) -> str:
    return state.model_dump_json(by_alias=True, indent=2)


def load_stack_state(text: str, source: str = "<string>") -> StackState:
    try:
        return StackState.model_validate_json(text)
    except ValidationError as e:
        raise ConfigurationError(f"invalid stack state in {source}: {e}", operation="read state") from None


def read_stack_state(path: Optional[Union[str, Path]] = None) -> StackState:
    """
    Reads a published stack state.

    :param path: State file; defaults to the file named by ``COMPOSE_STATE_FILE``.
    :return: The stack state.
    :raises ConfigurationError: If no file is configured or it cannot be read.
    """
    if path is None:
        path = os.environ.get(STATE_FILE_ENV)
        if not path:
            raise ConfigurationError(
                f"no state file given and {STATE_FILE_ENV} is not set; "
                "run the tests through 'composetest run' or the pytest plugin",
                operation="read state",
            )
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read state file {path}: {e}", operation="read state") from None
    return load_stack_state(text, source=str(path))
