import json
import logging

import pytest

from composetest.exceptions import ConfigurationError, OrchestrationFailure, StackTeardownWarning, TimeoutFailure
from composetest.MANAGERS.compose_service import ComposeService
from composetest.MANAGERS.lifecycle_coordinator import LifecycleCoordinator, ScopeStatus
from composetest.MANAGERS.state_handoff import StateHandoff, read_stack_state
from composetest.MODELS.service_info import LifecycleScope
from composetest.MODELS.stack_config import LogsSpec, StackSpec

from conftest import FakeInvoker, ps_line


@pytest.fixture
def make_coordinator(tmp_path, fake_clock):
    def make(invoker):
        service = ComposeService(invoker, compose_command=["docker", "compose"], clock=fake_clock)
        return LifecycleCoordinator(service, StateHandoff(tmp_path / "state"), clock=fake_clock)
    return make


def test_start_and_stop(compose_file, make_coordinator):
    invoker = FakeInvoker(["", ps_line("web", health="healthy", ports=[(8080, 80)])])
    coordinator = make_coordinator(invoker)
    spec = StackSpec.build("shop", [compose_file], wait_for_healthy=["web"], timeout_seconds=10, poll_seconds=2)

    scope = coordinator.create_scope(spec, owner="TestCheckout")
    assert scope.status is ScopeStatus.CREATED
    assert scope.project_name.startswith("shop-testcheckout-123045-")

    state = scope.start()

    assert scope.status is ScopeStatus.READY
    assert state.host_port("web", 80) == 8080
    assert read_stack_state(scope.state_file) == state
    assert coordinator.handoff.registry.get("shop") == state

    assert scope.stop() == []
    assert scope.status is ScopeStatus.TERMINATED
    assert "shop" not in coordinator.handoff.registry
    assert invoker.subcommands() == ["up", "ps", "ps", "ps", "down"]
    assert invoker.commands[-1][-2:] == ["--remove-orphans", "--volumes"]


def test_wait_timeout_tears_the_stack_down(compose_file, make_coordinator, fake_clock):
    invoker = FakeInvoker([ps_line("web", state="restarting")])
    coordinator = make_coordinator(invoker)
    spec = StackSpec.build("shop", [compose_file], wait_for_running=["web"], timeout_seconds=3, poll_seconds=2,
                           logs=LogsSpec(services=["web"]))

    scope = coordinator.create_scope(spec)
    with pytest.raises(TimeoutFailure) as exc_info:
        scope.start()

    assert exc_info.value.pending == {"web": "restarting"}
    assert scope.status is ScopeStatus.TERMINATED
    assert invoker.subcommands()[-2:] == ["logs", "down"]
    assert scope.state_file is None
    assert "shop" not in coordinator.handoff.registry


def test_failed_up_still_issues_down(compose_file, make_coordinator):
    invoker = FakeInvoker()
    invoker.respond("up", exit_code=1, stderr="port is already allocated")
    scope = make_coordinator(invoker).create_scope(StackSpec.build("shop", [compose_file]))

    with pytest.raises(OrchestrationFailure, match="port is already allocated"):
        scope.start()

    assert invoker.subcommands() == ["up", "down"]


def test_failed_cleanup_warns(compose_file, make_coordinator):
    invoker = FakeInvoker()
    invoker.respond("up", exit_code=1, stderr="boom")
    invoker.respond("down", exit_code=1, stderr="daemon unreachable")
    scope = make_coordinator(invoker).create_scope(StackSpec.build("shop", [compose_file]))

    with pytest.warns(StackTeardownWarning, match="daemon unreachable"):
        with pytest.raises(OrchestrationFailure, match="boom"):
            scope.start()


def test_configuration_errors_run_no_commands(tmp_path, compose_file, make_coordinator):
    invoker = FakeInvoker()
    coordinator = make_coordinator(invoker)

    missing = coordinator.create_scope(StackSpec.build("shop", [tmp_path / "missing.yml"]))
    with pytest.raises(ConfigurationError, match="compose file not found"):
        missing.start()
    assert missing.status is ScopeStatus.TERMINATED

    undeclared = coordinator.create_scope(StackSpec.build("shop", [compose_file], wait_for_running=["cache"]))
    with pytest.raises(ConfigurationError, match="undeclared service"):
        undeclared.start()

    assert invoker.commands == []


def test_healthy_wait_without_healthcheck_logs_warning(compose_file, make_coordinator, caplog):
    invoker = FakeInvoker([ps_line("db", health="healthy")])
    scope = make_coordinator(invoker).create_scope(
        StackSpec.build("shop", [compose_file], wait_for_healthy=["db"], timeout_seconds=10, poll_seconds=2))

    with caplog.at_level(logging.WARNING):
        scope.start()

    assert "declares no healthcheck" in caplog.text
    scope.stop()


def test_stop_is_idempotent(compose_file, make_coordinator):
    invoker = FakeInvoker()
    scope = make_coordinator(invoker).create_scope(StackSpec.build("shop", [compose_file]))
    scope.start()

    scope.stop()
    scope.stop()

    assert invoker.subcommands().count("down") == 1


def test_stop_before_start_runs_nothing(compose_file, make_coordinator):
    invoker = FakeInvoker()
    scope = make_coordinator(invoker).create_scope(StackSpec.build("shop", [compose_file]))

    assert scope.stop() == []
    assert scope.status is ScopeStatus.TERMINATED
    with pytest.raises(ConfigurationError, match="cannot be started again"):
        scope.start()
    assert invoker.commands == []


def test_teardown_failure_is_a_warning(compose_file, make_coordinator):
    invoker = FakeInvoker()
    scope = make_coordinator(invoker).create_scope(StackSpec.build("shop", [compose_file]))
    scope.start()
    invoker.respond("down", exit_code=1, stderr="permission denied")

    with pytest.warns(StackTeardownWarning, match="permission denied"):
        problems = scope.stop()

    assert len(problems) == 1
    assert scope.status is ScopeStatus.TERMINATED


def test_logs_are_written_before_down(tmp_path, compose_file, make_coordinator):
    invoker = FakeInvoker()
    invoker.respond("logs", stdout="web-1  | GET / 200\n")
    output = tmp_path / "logs" / "shop.log"
    spec = StackSpec.build("shop", [compose_file], logs=LogsSpec(output_file=output))
    scope = make_coordinator(invoker).create_scope(spec)

    with scope:
        pass

    assert output.read_text(encoding="utf-8") == "web-1  | GET / 200\n"
    assert invoker.subcommands()[-2:] == ["logs", "down"]


def test_shared_project_name_is_sanitized(compose_file, make_coordinator):
    spec = StackSpec.build("shop", [compose_file], project_name="Shop Stack", unique_project=False,
                           lifecycle=LifecycleScope.METHOD)

    scope = make_coordinator(FakeInvoker()).create_scope(spec, owner="test_one")

    assert scope.project_name == "shop-stack"


def test_resume_scope_uses_published_project(compose_file, make_coordinator):
    invoker = FakeInvoker()
    coordinator = make_coordinator(invoker)
    spec = StackSpec.build("shop", [compose_file])
    started = coordinator.create_scope(spec)
    state = started.start()
    saved = json.loads(started.state_file.read_text(encoding="utf-8"))

    resumed = coordinator.resume_scope(spec, read_stack_state(started.state_file))
    resumed.stop()

    assert saved["projectName"] == state.project_name
    assert invoker.commands[-1][:4] == ["docker", "compose", "-p", state.project_name]
