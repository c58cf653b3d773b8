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
Models describing the observed state of a running stack.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServiceState(str, Enum):
    """
    Readiness classification of a compose service.
    """
    RUNNING = "running"
    HEALTHY = "healthy"
    STOPPED = "stopped"
    RESTARTING = "restarting"
    UNKNOWN = "unknown"

    def satisfies(self, target: "ServiceState") -> bool:
        """
        Whether a service observed in this state counts as having reached ``target``.

        A RUNNING target is met by RUNNING or HEALTHY; every other target,
        HEALTHY included, needs an exact match.
        """
        if target is ServiceState.RUNNING:
            return self in (ServiceState.RUNNING, ServiceState.HEALTHY)
        return self is target


class LifecycleScope(str, Enum):
    """
    Test boundary a stack's lifetime is bound to.
    """
    CLASS = "class"
    METHOD = "method"


class PortMapping(BaseModel):
    """
    A container port published on the host.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    container_port: int = Field(alias="container")
    host_port: int = Field(alias="host")
    protocol: str = "tcp"


class ServiceInfo(BaseModel):
    """
    One service of a stack as reported by ``compose ps``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="serviceName")
    container_id: str = Field(default="unknown", alias="containerId")
    container_name: Optional[str] = Field(default=None, alias="containerName")
    state: ServiceState = ServiceState.UNKNOWN
    ports: List[PortMapping] = Field(default_factory=list, alias="publishedPorts")


class StackState(BaseModel):
    """
    Snapshot of a stack taken after it was brought up.

    Snapshots are never edited; a later observation produces a new StackState.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stack_name: str = Field(alias="stackName")
    project_name: str = Field(alias="projectName")
    scope: LifecycleScope = Field(default=LifecycleScope.CLASS, alias="lifecycle")
    created_at: datetime = Field(alias="timestamp")
    services: Dict[str, ServiceInfo] = Field(default_factory=dict)

    def service(self, name: str) -> ServiceInfo:
        """
        Looks up a service by name.

        :param name: Compose service name.
        :return: The service's info.
        :raises KeyError: If the stack has no such service.
        """
        try:
            return self.services[name]
        except KeyError:
            known = ", ".join(sorted(self.services)) or "none"
            raise KeyError(
                f"Service '{name}' not found in stack '{self.stack_name}' (services: {known})"
            ) from None

    def host_port(self, service: str, container_port: Optional[int] = None, protocol: str = "tcp") -> int:
        """
        Resolves the host port a service's container port is published on.

        :param service: Compose service name.
        :param container_port: Container-side port; the first published port when omitted.
        :param protocol: Transport protocol to match.
        :return: The host-exposed port.
        :raises KeyError: If the service or port is not published.
        """
        info = self.service(service)
        for mapping in info.ports:
            if mapping.protocol != protocol:
                continue
            if container_port is None or mapping.container_port == container_port:
                return mapping.host_port
        wanted = f"{container_port}/{protocol}" if container_port is not None else protocol
        raise KeyError(f"Service '{service}' in stack '{self.stack_name}' publishes no {wanted} port")
