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
Binding compose stacks to test scopes.

A StackScope walks CREATED -> STARTING -> READY -> TEARING_DOWN -> TERMINATED
exactly once. The pytest plugin and the command line both drive stacks through
the same LifecycleCoordinator, for class-scoped and method-scoped lifecycles
alike.
"""
import logging
import warnings
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..exceptions import ComposeError, ConfigurationError, StackTeardownWarning
from ..MODELS.service_info import ServiceState, StackState
from ..MODELS.stack_config import StackConfig, StackSpec, WaitSpec
from ..PARSERS.compose_parser import ComposeParser
from ..UTILS.clock import SystemClock
from ..UTILS.project_name import sanitize_project_name, unique_project_name
from .compose_service import ComposeService
from .log_capture import write_captured_logs
from .state_handoff import StateHandoff

logger = logging.getLogger(__name__)


class ScopeStatus(str, Enum):
    """Lifecycle status of a StackScope."""

    CREATED = "created"
    STARTING = "starting"
    READY = "ready"
    TEARING_DOWN = "tearing_down"
    TERMINATED = "terminated"


class StackScope:
    """
    One stack for the lifetime of one test scope.

    Use ``start()``/``stop()`` from framework hooks, or the scope as a
    context manager::

        with coordinator.create_scope(spec, owner="TestOrders") as state:
            port = state.host_port("web", 8080)
    """
    def __init__(self,
                 spec: StackSpec,
                 config: StackConfig,
                 service: ComposeService,
                 handoff: StateHandoff,
                 owner: Optional[str] = None):
        self.spec = spec
        self.config = config
        self.service = service
        self.handoff = handoff
        self.owner = owner
        self.status = ScopeStatus.CREATED
        self.state: Optional[StackState] = None
        self.state_file: Optional[Path] = None

    @property
    def stack_name(self) -> str:
        return self.config.stack_name

    @property
    def project_name(self) -> str:
        return self.config.project_name

    def __repr__(self) -> str:
        return f"StackScope(stack={self.stack_name!r}, project={self.project_name!r}, status={self.status.value})"

    def __enter__(self) -> StackState:
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        self.stop()
        return False

    def start(self) -> StackState:
        """
        Brings the stack up, waits for readiness and publishes its state.

        Configuration problems are raised before any compose command runs.
        If anything fails after the stack was started, logs are captured (when
        configured) and the stack is torn down before the error is re-raised.

        :return: State of the ready stack.
        :raises ConfigurationError: Invalid files, services or timings.
        :raises OrchestrationFailure: compose up failed.
        :raises TimeoutFailure: Services did not become ready in time.
        """
        if self.status is not ScopeStatus.CREATED:
            raise ConfigurationError(
                f"scope is {self.status.value} and cannot be started again",
                operation="start", project_name=self.project_name, stack_name=self.stack_name,
            )
        self._transition(ScopeStatus.STARTING)
        try:
            wait_specs = self._preflight()
        except ConfigurationError:
            self._transition(ScopeStatus.TERMINATED)
            raise

        try:
            state = self.service.up_stack(self.config, self.spec.lifecycle)
            for wait_spec in wait_specs:
                self.service.wait_for_services(wait_spec, stack_name=self.stack_name)
            if wait_specs:
                state = self.service.snapshot(self.config, self.spec.lifecycle)
            self.state_file = self.handoff.publish(state)
        except Exception as e:
            logger.error("Stack '%s' failed to start, cleaning up: %s", self.stack_name, e)
            self._cleanup_failed_start()
            self._transition(ScopeStatus.TERMINATED)
            raise

        self.state = state
        self._transition(ScopeStatus.READY)
        return state

    def stop(self) -> List[str]:
        """
        Captures logs if configured, then tears the stack down.

        Never raises for teardown problems: they are logged and issued as
        StackTeardownWarning so they cannot hide the test results.
        Stopping a terminated scope does nothing.

        :return: Descriptions of teardown problems, empty on a clean teardown.
        """
        if self.status is ScopeStatus.TERMINATED:
            logger.debug("%r already terminated", self)
            return []
        if self.status is ScopeStatus.CREATED:
            self._transition(ScopeStatus.TERMINATED)
            return []

        self._transition(ScopeStatus.TEARING_DOWN)
        problems = []
        try:
            self._capture_logs()
            try:
                self.service.down_stack(self.project_name, remove_volumes=self.spec.remove_volumes)
            except ComposeError as e:
                problems.append(str(e))
        finally:
            self.handoff.retract(self.stack_name)
            self._transition(ScopeStatus.TERMINATED)

        for problem in problems:
            self._warn(problem)
        return problems

    def _preflight(self) -> List[WaitSpec]:
        for path in self.config.compose_files:
            if not path.is_file():
                raise ConfigurationError(f"compose file not found: {path}", operation="up",
                                         project_name=self.project_name, stack_name=self.stack_name)
        for path in self.config.env_files:
            if not path.is_file():
                raise ConfigurationError(f"env file not found: {path}", operation="up",
                                         project_name=self.project_name, stack_name=self.stack_name)

        wait_specs = [wait.for_project(self.project_name) for wait in self.spec.waits]
        if self.spec.validate_services and wait_specs:
            self._check_wait_targets(wait_specs)
        return wait_specs

    def _check_wait_targets(self, wait_specs: List[WaitSpec]) -> None:
        context = self.service.env_manager.interpolation_context(self.config.env_files, self.config.extra_env)
        declared = ComposeParser(context).parse_files(self.config.compose_files).services
        for wait_spec in wait_specs:
            unknown = [name for name in wait_spec.services if name not in declared]
            if unknown:
                raise ConfigurationError(
                    f"cannot wait for undeclared service(s) {', '.join(unknown)}; "
                    f"declared: {', '.join(sorted(declared)) or 'none'}",
                    operation="wait", project_name=self.project_name, stack_name=self.stack_name,
                )
            if wait_spec.target_state is ServiceState.HEALTHY:
                for name in wait_spec.services:
                    if not declared[name].has_healthcheck:
                        logger.warning(
                            "Service '%s' of stack '%s' declares no healthcheck; it only becomes "
                            "HEALTHY if its image defines one", name, self.stack_name)

    def _cleanup_failed_start(self) -> None:
        try:
            self._capture_logs()
            self.service.down_stack(self.project_name, remove_volumes=self.spec.remove_volumes)
        except Exception as e:
            self._warn(f"cleanup after failed start of stack '{self.stack_name}' "
                       f"(project {self.project_name}) also failed: {e}")
        finally:
            self.handoff.retract(self.stack_name)

    def _capture_logs(self) -> None:
        logs = self.spec.logs
        if logs is None:
            return
        text = self.service.capture_logs(self.project_name, logs)
        write_captured_logs(text, logs.output_file, self.project_name)

    def _transition(self, status: ScopeStatus) -> None:
        logger.debug("Stack '%s' (project %s): %s -> %s",
                     self.stack_name, self.project_name, self.status.value, status.value)
        self.status = status

    def _warn(self, message: str) -> None:
        logger.warning("%s; containers of project %s may still be running", message, self.project_name)
        warnings.warn(message, StackTeardownWarning, stacklevel=3)


class LifecycleCoordinator:
    """
    Creates stack scopes wired to one compose service and one state handoff.

    Construct one per test session (or CLI invocation) and pass it to the
    hooks that need it.
    """
    def __init__(self, service: ComposeService, handoff: StateHandoff, clock=None):
        """
        :param service: Runs compose operations.
        :param handoff: Publishes state of started stacks.
        :param clock: Source of the time used in generated project names.
        """
        self.service = service
        self.handoff = handoff
        self.clock = clock or SystemClock()

    def create_scope(self, spec: StackSpec, owner: Optional[str] = None) -> StackScope:
        """
        Creates a scope for one test class or test method.

        :param spec: The stack to run.
        :param owner: Name of the test class or method, used in the project name.
        :return: A scope in CREATED status.
        """
        config = spec.config
        if spec.unique_project:
            project_name = unique_project_name(config.project_name, owner, self.clock.now())
        else:
            project_name = sanitize_project_name(config.project_name)
        if project_name != config.project_name:
            config = config.model_copy(update={"project_name": project_name})
        return StackScope(spec, config, self.service, self.handoff, owner)

    def resume_scope(self, spec: StackSpec, state: Optional[StackState] = None) -> StackScope:
        """
        Wraps a stack started by an earlier process so it can be torn down.

        :param spec: The stack's spec.
        :param state: Its published state; its project name wins over the spec's.
        :return: A scope in READY status.
        """
        config = spec.config
        project_name = state.project_name if state is not None else sanitize_project_name(config.project_name)
        if project_name != config.project_name:
            config = config.model_copy(update={"project_name": project_name})
        scope = StackScope(spec, config, self.service, self.handoff)
        scope.state = state
        scope.status = ScopeStatus.READY
        return scope
