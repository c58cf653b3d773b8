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
Orchestration of compose stacks through the compose CLI.
"""
import logging
import re
from typing import Dict, List, Optional, Sequence

from ..exceptions import ConfigurationError, OrchestrationFailure, ProcessTimeout
from ..MODELS.service_info import LifecycleScope, ServiceInfo, ServiceState, StackState
from ..MODELS.stack_config import LogsSpec, StackConfig, WaitSpec
from ..PARSERS.compose_output_parser import parse_services_from_json_lines
from ..RUNNERS.command_builder import DEFAULT_COMPOSE_COMMAND, LEGACY_COMPOSE_COMMAND, ComposeCommandBuilder
from ..RUNNERS.process_invoker import ProcessInvoker, ProcessResult
from ..UTILS.clock import SystemClock
from .environment_manager import EnvironmentManager
from .readiness_poller import ReadinessPoller

logger = logging.getLogger(__name__)

# stderr of `compose down` for a project that has nothing left to remove
_ALREADY_DOWN = re.compile(r"no (such|resource|container)|not found|no configuration file", re.IGNORECASE)


class ComposeService:
    """
    Brings stacks up and down, inspects them, waits on them and captures their logs.

    Each call runs one compose command (waiting runs one per poll). Nothing is
    remembered between calls apart from which compose executable to use.
    """
    def __init__(self,
                 invoker: Optional[ProcessInvoker] = None,
                 compose_command: Optional[Sequence[str]] = None,
                 command_timeout: Optional[float] = None,
                 clock=None,
                 env_manager: Optional[EnvironmentManager] = None):
        """
        Initializes the service.

        :param invoker: Runs compose processes.
        :param compose_command: Compose executable prefix; detected on first use when omitted.
        :param command_timeout: Seconds any single compose command may take.
        :param clock: Time source for snapshots and polling.
        :param env_manager: Builds subprocess environments.
        """
        self.invoker = invoker or ProcessInvoker()
        self.command_timeout = command_timeout
        self.clock = clock or SystemClock()
        self.env_manager = env_manager or EnvironmentManager()
        self.poller = ReadinessPoller(self.get_services, clock=self.clock)
        self._builder = ComposeCommandBuilder(compose_command) if compose_command else None

    @property
    def commands(self) -> ComposeCommandBuilder:
        """
        The command builder, detecting the compose executable on first access.
        """
        if self._builder is None:
            self._builder = ComposeCommandBuilder(self._detect_compose_command())
        return self._builder

    def _detect_compose_command(self) -> List[str]:
        for candidate in (DEFAULT_COMPOSE_COMMAND, LEGACY_COMPOSE_COMMAND):
            probe = ComposeCommandBuilder(candidate).version()
            try:
                result = self.invoker.run(probe, timeout=30)
            except ProcessTimeout:
                continue
            if result.ok:
                logger.info("Using compose command: %s", " ".join(candidate))
                return list(candidate)
        raise ConfigurationError(
            "Docker Compose is not available. Install Docker Compose or Docker Desktop "
            "and make sure it is on PATH.",
            operation="detect",
        )

    def up_stack(self, config: StackConfig, scope: LifecycleScope = LifecycleScope.CLASS) -> StackState:
        """
        Starts a stack in the background and returns its state.

        :param config: The stack to start.
        :param scope: Lifecycle scope recorded in the returned state.
        :return: A snapshot of the stack right after start.
        :raises OrchestrationFailure: If compose exits non-zero or hangs.
        """
        logger.info("Starting compose stack '%s' (project %s)", config.stack_name, config.project_name)
        result = self._run_or_fail(
            self.commands.up(config),
            operation="up",
            project_name=config.project_name,
            stack_name=config.stack_name,
            working_dir=config.working_dir,
            env=self.env_manager.process_environment(config.extra_env),
        )
        self._raise_on_failure(result, "up", config.project_name, config.stack_name)
        state = self.snapshot(config, scope)
        logger.info("Compose stack '%s' started with %d service(s)", config.stack_name, len(state.services))
        for name, info in sorted(state.services.items()):
            ports = ", ".join(f"{p.host_port}->{p.container_port}/{p.protocol}" for p in info.ports)
            logger.debug("  %s: %s %s", name, info.state.value, ports)
        return state

    def snapshot(self, config: StackConfig, scope: LifecycleScope = LifecycleScope.CLASS) -> StackState:
        """
        Takes a fresh StackState of a running stack.
        """
        return StackState(
            stack_name=config.stack_name,
            project_name=config.project_name,
            scope=scope,
            created_at=self.clock.now(),
            services=self.get_services(config.project_name),
        )

    def get_services(self, project_name: str) -> Dict[str, ServiceInfo]:
        """
        Lists a project's services and their current states.

        A failing ps command is logged and reported as no services, so a
        waiting caller sees every service as UNKNOWN and keeps polling.

        :param project_name: Compose project.
        :return: Service name to ServiceInfo.
        """
        command = self.commands.ps(project_name)
        try:
            result = self.invoker.run(command, timeout=self.command_timeout)
        except ProcessTimeout as e:
            logger.warning("Listing services of project %s timed out: %s", project_name, e)
            return {}
        if not result.ok:
            logger.warning("Failed to list services of project %s (exit %d): %s",
                           project_name, result.exit_code, result.stderr.strip())
            return {}
        return parse_services_from_json_lines(result.stdout, project_name)

    def down_stack(self, project_name: str, remove_volumes: bool = False) -> None:
        """
        Stops and removes a project's containers.

        Stopping a project that is already gone only logs.

        :param project_name: Compose project.
        :param remove_volumes: Also remove named volumes.
        :raises OrchestrationFailure: If compose fails for any other reason.
        """
        logger.info("Stopping compose project %s", project_name)
        result = self._run_or_fail(self.commands.down(project_name, remove_volumes),
                                   operation="down", project_name=project_name)
        if not result.ok and _ALREADY_DOWN.search(result.stderr or ""):
            logger.info("Compose project %s is already down: %s", project_name, result.stderr.strip())
            return
        self._raise_on_failure(result, "down", project_name)
        logger.info("Compose project %s stopped", project_name)

    def wait_for_services(self, spec: WaitSpec, stack_name: Optional[str] = None) -> ServiceState:
        """
        Waits until the services in ``spec`` reach its target state.

        :raises TimeoutFailure: If they do not within the timeout.
        """
        return self.poller.wait(spec, stack_name=stack_name)

    def capture_logs(self, project_name: str, spec: LogsSpec) -> str:
        """
        Captures container logs once. Never raises: a failed capture returns an empty string.

        :param project_name: Compose project.
        :param spec: Services and tail length.
        :return: The captured log text.
        """
        if spec.follow:
            logger.warning("Log follow mode is not supported for a one-off capture, ignoring it")
        try:
            result = self.invoker.run(self.commands.logs(project_name, spec), timeout=self.command_timeout)
        except (ProcessTimeout, ConfigurationError) as e:
            logger.warning("Log capture for project %s failed: %s", project_name, e)
            return ""
        if not result.ok:
            logger.warning("Log capture for project %s failed (exit %d): %s",
                           project_name, result.exit_code, result.stderr.strip())
            return ""
        return result.stdout

    def _run_or_fail(self, command: List[str], operation: str, project_name: str,
                     stack_name: Optional[str] = None, **kwargs) -> ProcessResult:
        try:
            return self.invoker.run(command, timeout=self.command_timeout, **kwargs)
        except ProcessTimeout as e:
            raise OrchestrationFailure(e.reason, operation=operation, project_name=project_name,
                                       stack_name=stack_name, stderr=e.stderr) from e

    @staticmethod
    def _raise_on_failure(result: ProcessResult, operation: str, project_name: str,
                          stack_name: Optional[str] = None) -> None:
        if result.ok:
            return
        stderr = result.stderr.strip()
        raise OrchestrationFailure(
            f"compose {operation} exited with code {result.exit_code}: {stderr or '(no output)'}",
            operation=operation,
            project_name=project_name,
            stack_name=stack_name,
            exit_code=result.exit_code,
            stderr=stderr,
        )
