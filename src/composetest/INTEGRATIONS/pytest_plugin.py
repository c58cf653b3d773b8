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
pytest plugin running compose stacks around test classes or test functions.

Enable it in a ``conftest.py``::

    pytest_plugins = ["composetest.INTEGRATIONS.pytest_plugin"]

and mark the tests::

    @pytest.mark.compose_stack("shop", files=["compose.yml"], wait_for_healthy=["web"])
    class TestShop:
        def test_home(self, compose_stack):
            port = compose_stack.host_port("web", 8080)

``lifecycle="class"`` (the default) starts one stack for the whole class
(or module), ``lifecycle="method"`` one stack per test. Relative paths are
resolved against the directory of the test file.

Without a marker the stack described by ``COMPOSETEST_STACK_SPEC`` is used,
which is how ``composetest run --lifecycle method`` hands its stack over.
"""
import contextlib
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence, Union

import pytest
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..MANAGERS.compose_service import ComposeService
from ..MANAGERS.lifecycle_coordinator import LifecycleCoordinator, StackScope
from ..MANAGERS.state_handoff import STACK_SPEC_ENV, STATE_FILE_ENV, StateHandoff, StateRegistry
from ..MODELS.service_info import LifecycleScope, StackState
from ..MODELS.settings import EngineSettings
from ..MODELS.stack_config import LogsSpec, StackSpec
from ..RUNNERS.process_invoker import ProcessInvoker
from ..UTILS.clock import SystemClock

logger = logging.getLogger(__name__)

MARKER = "compose_stack"

# Marker keywords passed straight through to StackSpec
_SPEC_OPTIONS = ("unique_project", "remove_volumes", "validate_services")


def pytest_addoption(parser):
    group = parser.getgroup("composetest", "compose stacks for tests")
    group.addoption(
        "--compose-state-dir",
        action="store",
        default=None,
        help="Directory stack state files are written to (default: build/compose-state).",
    )
    parser.addini("compose_state_dir", "Directory stack state files are written to.", default=None)


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        f"{MARKER}(stack_name, files, lifecycle='class', project=None, env_files=(), "
        "wait_for_healthy=(), wait_for_running=(), timeout=60, poll=2, logs=None, logs_tail=100): "
        "run a Docker Compose stack for the marked tests.",
    )


@pytest.fixture(scope="session")
def compose_settings(pytestconfig) -> EngineSettings:
    """Engine settings from ``COMPOSETEST_*`` variables and the command line."""
    state_dir = pytestconfig.getoption("compose_state_dir") or pytestconfig.getini("compose_state_dir") or None
    settings = EngineSettings.from_env(state_dir=state_dir)
    if not settings.state_dir.is_absolute():
        settings = settings.model_copy(update={"state_dir": pytestconfig.rootpath / settings.state_dir})
    return settings


@pytest.fixture(scope="session")
def compose_clock() -> SystemClock:
    return SystemClock()


@pytest.fixture(scope="session")
def compose_invoker(compose_settings) -> ProcessInvoker:
    return ProcessInvoker(default_timeout=compose_settings.command_timeout_seconds)


@pytest.fixture(scope="session")
def compose_registry() -> StateRegistry:
    """States of the stacks currently running in this session, by stack name."""
    return StateRegistry()


@pytest.fixture(scope="session")
def compose_coordinator(compose_settings, compose_invoker, compose_clock, compose_registry) -> LifecycleCoordinator:
    service = ComposeService(
        compose_invoker,
        compose_command=compose_settings.compose_command,
        command_timeout=compose_settings.command_timeout_seconds,
        clock=compose_clock,
    )
    handoff = StateHandoff(compose_settings.state_dir, compose_registry)
    return LifecycleCoordinator(service, handoff, clock=compose_clock)


@pytest.fixture(scope="class")
def _compose_class_stack(request, compose_coordinator, compose_settings) -> Iterator[Optional[StackState]]:
    spec = stack_spec_for(request.node, compose_settings)
    if spec is None or spec.lifecycle is not LifecycleScope.CLASS:
        yield None
        return
    scope = compose_coordinator.create_scope(spec, owner=request.node.name)
    with running(scope) as state:
        yield state


@pytest.fixture
def compose_stack(request, _compose_class_stack, compose_coordinator, compose_settings) -> Iterator[StackState]:
    """
    State of the stack configured for the current test.

    Shared by every test of the class for ``lifecycle="class"``, fresh for
    each test for ``lifecycle="method"``. ``COMPOSE_STATE_FILE`` points at the
    stack's state file while it runs.
    """
    spec = stack_spec_for(request.node, compose_settings)
    if spec is None:
        raise ConfigurationError(
            f"test {request.node.nodeid} uses compose_stack but has no @pytest.mark.{MARKER} "
            f"and {STACK_SPEC_ENV} is not set",
            operation="configure",
        )
    if spec.lifecycle is LifecycleScope.CLASS and _compose_class_stack is not None:
        yield _compose_class_stack
        return
    scope = compose_coordinator.create_scope(spec, owner=request.node.name)
    with running(scope) as state:
        yield state


@contextlib.contextmanager
def running(scope: StackScope) -> Iterator[StackState]:
    """
    Starts a scope, exports its state file location and stops it on exit.
    """
    state = scope.start()
    try:
        with pytest.MonkeyPatch.context() as mp:
            mp.setenv(STATE_FILE_ENV, str(scope.state_file))
            logger.debug("%s=%s for %r", STATE_FILE_ENV, scope.state_file, scope)
            yield state
    finally:
        scope.stop()


def stack_spec_for(node, settings: EngineSettings) -> Optional[StackSpec]:
    """
    Resolves the stack configured for a collection node.

    :param node: Test item, class or module.
    :param settings: Supplies default timeouts.
    :return: The spec, or None if nothing is configured.
    :raises ConfigurationError: If both a configured marker and ``COMPOSETEST_STACK_SPEC`` are present.
    """
    marker = node.get_closest_marker(MARKER)
    configured = marker is not None and bool(marker.args or marker.kwargs)
    spec_file = os.environ.get(STACK_SPEC_ENV)
    if configured and spec_file:
        raise ConfigurationError(
            f"stack configured both by @pytest.mark.{MARKER} on {node.nodeid} and by {STACK_SPEC_ENV}={spec_file}; "
            "remove one of them",
            operation="configure",
        )
    if configured:
        return spec_from_marker(marker.args, marker.kwargs, Path(node.path).parent, settings)
    if spec_file:
        logger.debug("Using stack spec from %s=%s for %s", STACK_SPEC_ENV, spec_file, node.nodeid)
        return StackSpec.load(Path(spec_file))
    return None


def spec_from_marker(args: Sequence[Any], kwargs: Dict[str, Any], base_dir: Path,
                     settings: EngineSettings) -> StackSpec:
    """
    Builds a StackSpec from ``compose_stack`` marker arguments.
    """
    options = dict(kwargs)
    stack_name = args[0] if args else options.pop("stack_name", None)
    if not stack_name:
        raise ConfigurationError(f"@pytest.mark.{MARKER} needs a stack name", operation="configure")

    files = options.pop("files", None) or options.pop("compose_files", None)
    if not files:
        raise ConfigurationError(f"@pytest.mark.{MARKER} needs compose files",
                                 operation="configure", stack_name=stack_name)

    logs = _logs_spec(options.pop("logs", None), options.pop("logs_tail", 100),
                      options.pop("logs_services", ()), base_dir)
    build_args = dict(
        project_name=options.pop("project", None),
        env_files=_resolve_all(options.pop("env_files", ()), base_dir),
        extra_env=options.pop("env", None),
        wait_for_healthy=_as_list(options.pop("wait_for_healthy", ())),
        wait_for_running=_as_list(options.pop("wait_for_running", ())),
        timeout_seconds=options.pop("timeout", settings.default_timeout_seconds),
        poll_seconds=options.pop("poll", settings.default_poll_seconds),
        lifecycle=options.pop("lifecycle", LifecycleScope.CLASS),
        logs=logs,
    )
    extra = {key: options.pop(key) for key in _SPEC_OPTIONS if key in options}
    if options:
        raise ConfigurationError(
            f"unknown @pytest.mark.{MARKER} argument(s): {', '.join(sorted(options))}",
            operation="configure", stack_name=stack_name,
        )
    try:
        return StackSpec.build(stack_name, _resolve_all(files, base_dir), **build_args, **extra)
    except (ValueError, ValidationError) as e:
        raise ConfigurationError(str(e), operation="configure", stack_name=stack_name) from None


def _logs_spec(logs: Any, tail: int, services: Sequence[str], base_dir: Path) -> Optional[LogsSpec]:
    if not logs:
        return None
    output_file = None if logs is True else _resolve(logs, base_dir)
    return LogsSpec(services=_as_list(services), tail_lines=tail, output_file=output_file)


def _as_list(value: Union[str, Sequence[str], None]) -> list:
    if not value:
        return []
    if isinstance(value, (str, Path)):
        return [value]
    return list(value)


def _resolve(path: Union[str, Path], base_dir: Path) -> Path:
    path = Path(path)
    return path if path.is_absolute() else base_dir / path


def _resolve_all(paths: Union[str, Path, Sequence[Union[str, Path]]], base_dir: Path) -> list:
    return [_resolve(p, base_dir) for p in _as_list(paths)]
