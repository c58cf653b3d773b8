import pytest

from composetest.exceptions import TimeoutFailure
from composetest.MANAGERS.readiness_poller import ReadinessPoller
from composetest.MODELS.service_info import ServiceInfo, ServiceState
from composetest.MODELS.stack_config import WaitSpec


class SequenceFetcher:
    """Returns one state per call for a single service; the last one repeats."""

    def __init__(self, service, states):
        self.service = service
        self.states = list(states)
        self.calls = 0

    def __call__(self, project_name):
        state = self.states[min(self.calls, len(self.states) - 1)]
        self.calls += 1
        if state is None:
            return {}
        return {self.service: ServiceInfo(name=self.service, state=state)}


def test_resolves_on_first_tick_that_is_ready(fake_clock):
    fetcher = SequenceFetcher("web", [ServiceState.UNKNOWN, ServiceState.UNKNOWN, ServiceState.RUNNING])
    poller = ReadinessPoller(fetcher, clock=fake_clock)
    spec = WaitSpec(project_name="shop", services=["web"], timeout_seconds=10, poll_seconds=2)

    assert poller.wait(spec) is ServiceState.RUNNING
    assert fetcher.calls == 3
    assert fake_clock.sleeps == [2, 2]


def test_running_target_accepts_healthy(fake_clock):
    poller = ReadinessPoller(SequenceFetcher("web", [ServiceState.HEALTHY]), clock=fake_clock)
    spec = WaitSpec(project_name="shop", services=["web"], timeout_seconds=10, poll_seconds=2)

    poller.wait(spec)

    assert fake_clock.sleeps == []


def test_healthy_target_needs_healthy(fake_clock):
    poller = ReadinessPoller(SequenceFetcher("web", [ServiceState.RUNNING]), clock=fake_clock)
    spec = WaitSpec(project_name="shop", services=["web"], target_state=ServiceState.HEALTHY,
                    timeout_seconds=5, poll_seconds=1)

    with pytest.raises(TimeoutFailure) as exc_info:
        poller.wait(spec)

    assert exc_info.value.pending == {"web": ServiceState.RUNNING}


def test_times_out_naming_pending_services(fake_clock):
    fetcher = SequenceFetcher("web", [ServiceState.RESTARTING])
    poller = ReadinessPoller(fetcher, clock=fake_clock)
    spec = WaitSpec(project_name="shop", services=["web"], timeout_seconds=3, poll_seconds=2)

    with pytest.raises(TimeoutFailure) as exc_info:
        poller.wait(spec, stack_name="shop-stack")

    error = exc_info.value
    assert error.pending == {"web": ServiceState.RESTARTING}
    assert error.project_name == "shop"
    assert error.stack_name == "shop-stack"
    assert "web (restarting)" in str(error)
    assert "3s" in str(error)
    # the last sleep is cut short so the final check happens at the deadline
    assert fake_clock.sleeps == [2, 1]
    assert fake_clock.time == 3


def test_missing_service_counts_as_unknown(fake_clock):
    poller = ReadinessPoller(SequenceFetcher("web", [None]), clock=fake_clock)
    spec = WaitSpec(project_name="shop", services=["web"], timeout_seconds=2, poll_seconds=1)

    with pytest.raises(TimeoutFailure) as exc_info:
        poller.wait(spec)

    assert exc_info.value.pending == {"web": ServiceState.UNKNOWN}


def test_waits_for_every_service(fake_clock):
    ticks = iter([
        {"web": ServiceInfo(name="web", state=ServiceState.RUNNING)},
        {"web": ServiceInfo(name="web", state=ServiceState.RUNNING),
         "db": ServiceInfo(name="db", state=ServiceState.RUNNING)},
    ])
    poller = ReadinessPoller(lambda project: next(ticks), clock=fake_clock)
    spec = WaitSpec(project_name="shop", services=["web", "db"], timeout_seconds=10, poll_seconds=2)

    poller.wait(spec)

    assert fake_clock.sleeps == [2]
