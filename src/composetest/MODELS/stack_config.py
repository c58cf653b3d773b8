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
Models for configuring a stack: what to start, what to wait for and which logs to keep.

All validation happens at construction so a bad configuration fails before any
compose command is run.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..exceptions import ConfigurationError
from .service_info import LifecycleScope, ServiceState

logger = logging.getLogger(__name__)


class StackConfig(BaseModel):
    """
    Which compose files to start, under which project name.
    """
    model_config = ConfigDict(frozen=True)

    stack_name: str
    project_name: str
    compose_files: List[Path]
    env_files: List[Path] = []
    extra_env: Dict[str, str] = {}

    @model_validator(mode="after")
    def _check(self) -> "StackConfig":
        if not self.stack_name.strip():
            raise ConfigurationError("stack name must not be empty", operation="configure")
        if not self.project_name.strip():
            raise ConfigurationError(
                "project name must not be empty", operation="configure", stack_name=self.stack_name
            )
        if not self.compose_files:
            raise ConfigurationError(
                "at least one compose file is required",
                operation="configure",
                project_name=self.project_name,
                stack_name=self.stack_name,
            )
        return self

    @property
    def working_dir(self) -> Path:
        """
        Directory compose commands run in: the directory of the first compose file.
        """
        return self.compose_files[0].parent


def _check_timing(services: Sequence[str], timeout_seconds: float, poll_seconds: float,
                  project_name: Optional[str] = None) -> None:
    if not services:
        raise ConfigurationError("at least one service to wait for is required",
                                 operation="wait", project_name=project_name)
    if timeout_seconds <= 0:
        raise ConfigurationError(f"timeout must be positive, got {timeout_seconds:g}s",
                                 operation="wait", project_name=project_name)
    if poll_seconds <= 0:
        raise ConfigurationError(f"poll interval must be positive, got {poll_seconds:g}s",
                                 operation="wait", project_name=project_name)
    if poll_seconds >= timeout_seconds:
        raise ConfigurationError(
            f"poll interval ({poll_seconds:g}s) must be shorter than the timeout ({timeout_seconds:g}s)",
            operation="wait",
            project_name=project_name,
        )


class WaitCondition(BaseModel):
    """
    A readiness requirement declared before the project name is known.
    """
    model_config = ConfigDict(frozen=True)

    services: List[str]
    target_state: ServiceState = ServiceState.RUNNING
    timeout_seconds: float = 60.0
    poll_seconds: float = 2.0

    @model_validator(mode="after")
    def _check(self) -> "WaitCondition":
        _check_timing(self.services, self.timeout_seconds, self.poll_seconds)
        return self

    def for_project(self, project_name: str) -> "WaitSpec":
        return WaitSpec(
            project_name=project_name,
            services=self.services,
            target_state=self.target_state,
            timeout_seconds=self.timeout_seconds,
            poll_seconds=self.poll_seconds,
        )


class WaitSpec(BaseModel):
    """
    Services of a running project that must reach ``target_state`` within the timeout.
    """
    model_config = ConfigDict(frozen=True)

    project_name: str
    services: List[str]
    target_state: ServiceState = ServiceState.RUNNING
    timeout_seconds: float = 60.0
    poll_seconds: float = 2.0

    @model_validator(mode="after")
    def _check(self) -> "WaitSpec":
        if not self.project_name.strip():
            raise ConfigurationError("project name must not be empty", operation="wait")
        _check_timing(self.services, self.timeout_seconds, self.poll_seconds, self.project_name)
        return self


class LogsSpec(BaseModel):
    """
    Which container logs to capture and where to write them.
    """
    model_config = ConfigDict(frozen=True)

    services: List[str] = []
    tail_lines: int = 100
    # A capture is always finite; kept so the options mirror `compose logs`.
    follow: bool = False
    output_file: Optional[Path] = None

    @field_validator("tail_lines")
    @classmethod
    def _clamp_tail(cls, value: int) -> int:
        return max(1, value)


class StackSpec(BaseModel):
    """
    Everything the lifecycle coordinator needs to run one stack for one test scope.
    """
    model_config = ConfigDict(frozen=True)

    config: StackConfig
    waits: List[WaitCondition] = []
    logs: Optional[LogsSpec] = None
    lifecycle: LifecycleScope = LifecycleScope.CLASS
    unique_project: bool = True
    remove_volumes: bool = True
    validate_services: bool = True

    @property
    def stack_name(self) -> str:
        return self.config.stack_name

    @classmethod
    def build(cls,
              stack_name: str,
              compose_files: Sequence[Union[str, Path]],
              project_name: Optional[str] = None,
              env_files: Sequence[Union[str, Path]] = (),
              extra_env: Optional[Dict[str, str]] = None,
              wait_for_healthy: Sequence[str] = (),
              wait_for_running: Sequence[str] = (),
              timeout_seconds: float = 60.0,
              poll_seconds: float = 2.0,
              lifecycle: Union[str, LifecycleScope] = LifecycleScope.CLASS,
              logs: Optional[LogsSpec] = None,
              **options) -> "StackSpec":
        """
        Builds a spec from flat keyword arguments, the shape used by the CLI and the pytest marker.

        :param stack_name: Human-readable stack name, also the state file key.
        :param compose_files: Compose files, in override order.
        :param project_name: Compose project name; defaults to the stack name.
        :param wait_for_healthy: Services that must become HEALTHY.
        :param wait_for_running: Services that must become RUNNING.
        :return: The validated spec.
        """
        config = StackConfig(
            stack_name=stack_name,
            project_name=project_name or stack_name,
            compose_files=[Path(f) for f in compose_files],
            env_files=[Path(f) for f in env_files],
            extra_env=extra_env or {},
        )
        waits = []
        if wait_for_healthy:
            waits.append(WaitCondition(services=list(wait_for_healthy), target_state=ServiceState.HEALTHY,
                                       timeout_seconds=timeout_seconds, poll_seconds=poll_seconds))
        if wait_for_running:
            waits.append(WaitCondition(services=list(wait_for_running), target_state=ServiceState.RUNNING,
                                       timeout_seconds=timeout_seconds, poll_seconds=poll_seconds))
        return cls(config=config, waits=waits, logs=logs, lifecycle=LifecycleScope(lifecycle), **options)

    def dump(self, path: Path) -> Path:
        """
        Writes the spec as JSON so another process can run the same stack.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        logger.debug("Stack spec for '%s' written to %s", self.stack_name, path)
        return path

    @classmethod
    def load(cls, path: Path) -> "StackSpec":
        if not path.is_file():
            raise ConfigurationError(f"stack spec file not found: {path}", operation="configure")
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise ConfigurationError(f"invalid stack spec in {path}: {e}", operation="configure") from None
