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
Deterministic construction of compose CLI invocations.
"""
from typing import List, Optional, Sequence

from ..MODELS.stack_config import LogsSpec, StackConfig

DEFAULT_COMPOSE_COMMAND = ["docker", "compose"]
LEGACY_COMPOSE_COMMAND = ["docker-compose"]


class ComposeCommandBuilder:
    """
    Builds argument lists for the compose CLI.

    The builder has no side effects: the same inputs always give the same
    command, which is what the tests assert on.
    """
    def __init__(self, compose_command: Optional[Sequence[str]] = None):
        """
        :param compose_command: Executable prefix, e.g. ``["docker", "compose"]``.
        """
        self.compose_command = list(compose_command or DEFAULT_COMPOSE_COMMAND)

    def up(self, config: StackConfig) -> List[str]:
        """
        ``<compose> -f F... -p PROJECT --env-file E... up -d``
        """
        command = list(self.compose_command)
        for compose_file in config.compose_files:
            command += ["-f", str(compose_file)]
        command += ["-p", config.project_name]
        for env_file in config.env_files:
            command += ["--env-file", str(env_file)]
        command += ["up", "-d"]
        return command

    def down(self, project_name: str, remove_volumes: bool = False) -> List[str]:
        command = self._project(project_name) + ["down", "--remove-orphans"]
        if remove_volumes:
            command.append("--volumes")
        return command

    def ps(self, project_name: str) -> List[str]:
        # --all so exited containers are reported as stopped instead of vanishing
        return self._project(project_name) + ["ps", "--all", "--format", "json"]

    def logs(self, project_name: str, spec: LogsSpec) -> List[str]:
        """
        ``<compose> -p PROJECT logs --no-color --tail N [SERVICE...]``

        Never adds ``--follow``: a capture has to terminate.
        """
        command = self._project(project_name) + ["logs", "--no-color", "--tail", str(spec.tail_lines)]
        command += list(spec.services)
        return command

    def version(self) -> List[str]:
        if self.compose_command == LEGACY_COMPOSE_COMMAND:
            return self.compose_command + ["--version"]
        return self.compose_command + ["version"]

    def _project(self, project_name: str) -> List[str]:
        return list(self.compose_command) + ["-p", project_name]
