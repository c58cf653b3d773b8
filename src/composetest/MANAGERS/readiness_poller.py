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
Waiting for compose services to reach a readiness state.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from tenacity import RetryCallState, Retrying, retry_if_result

from ..exceptions import TimeoutFailure
from ..MODELS.service_info import ServiceInfo, ServiceState
from ..MODELS.stack_config import WaitSpec
from ..UTILS.clock import SystemClock

logger = logging.getLogger(__name__)

ServiceFetcher = Callable[[str], Dict[str, ServiceInfo]]


@dataclass
class Observation:
    """States seen for the awaited services on one poll tick."""

    tick: int
    states: Dict[str, ServiceState] = field(default_factory=dict)
    pending: Dict[str, ServiceState] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return not self.pending


class ReadinessPoller:
    """
    Polls a project's services until they all reach a target state or time runs out.

    Each tick queries the services once. The poll settles READY as soon as a
    tick sees every awaited service in the target state, without sleeping
    out the rest of the interval, or TIMED_OUT once the elapsed time on the
    clock reaches the timeout.
    """
    def __init__(self, fetch_services: ServiceFetcher, clock=None):
        """
        Initializes the poller.

        :param fetch_services: Returns the current services of a project.
        :param clock: Time source; tests pass one that advances without sleeping.
        """
        self.fetch_services = fetch_services
        self.clock = clock or SystemClock()

    def wait(self, spec: WaitSpec, stack_name: Optional[str] = None) -> ServiceState:
        """
        Blocks until every service in ``spec`` satisfies the target state.

        :param spec: What to wait for and for how long.
        :param stack_name: Used in error messages.
        :return: The target state.
        :raises TimeoutFailure: Naming each service that was not ready and its last state.
        """
        logger.info("Waiting up to %gs for %s to be %s (project %s)",
                    spec.timeout_seconds, ", ".join(spec.services),
                    spec.target_state.value.upper(), spec.project_name)
        deadline = self.clock.monotonic() + spec.timeout_seconds
        ticks = {"count": 0}

        def observe() -> Observation:
            ticks["count"] += 1
            return self._observe(spec, ticks["count"])

        def timed_out(retry_state: RetryCallState) -> bool:
            return self.clock.monotonic() >= deadline

        def next_delay(retry_state: RetryCallState) -> float:
            return max(0.0, min(spec.poll_seconds, deadline - self.clock.monotonic()))

        retrying = Retrying(
            stop=timed_out,
            wait=next_delay,
            sleep=self.clock.sleep,
            retry=retry_if_result(lambda observation: not observation.ready),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            reraise=True,
        )
        observation = retrying(observe)

        if observation.ready:
            logger.info("Services ready after %d poll(s): %s", observation.tick, ", ".join(spec.services))
            return spec.target_state

        raise TimeoutFailure(
            spec.target_state,
            observation.pending,
            spec.timeout_seconds,
            project_name=spec.project_name,
            stack_name=stack_name,
        )

    def _observe(self, spec: WaitSpec, tick: int) -> Observation:
        services = self.fetch_services(spec.project_name)
        observation = Observation(tick=tick)
        for name in spec.services:
            info = services.get(name)
            state = info.state if info else ServiceState.UNKNOWN
            observation.states[name] = state
            if not state.satisfies(spec.target_state):
                observation.pending[name] = state
        logger.debug("Poll %d for project %s: %s", tick, spec.project_name,
                     ", ".join(f"{n}={s.value}" for n, s in observation.states.items()))
        return observation
