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
Parsers for the output of ``docker compose ps``.

Everything here is a pure function of its input. Malformed entries are skipped
and logged; they never fail the batch they belong to.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..MODELS.service_info import PortMapping, ServiceInfo, ServiceState

logger = logging.getLogger(__name__)

# [host-ip:]host-port->container-port[/protocol], ports may be ranges
PORT_PATTERN = re.compile(
    r"^(?:(?P<ip>\S*):)?(?P<host>\d+(?:-\d+)?)->(?P<container>\d+(?:-\d+)?)(?:/(?P<protocol>\w+))?$"
)
MAX_PORT = 65535


def parse_service_state(raw_status: Optional[str]) -> ServiceState:
    """
    Classifies a compose status string such as ``"Up 5 minutes (healthy)"``.

    Matching is case-insensitive and the first rule that matches wins:
    restarting, then healthy, then running, then stopped.

    :param raw_status: Status or state text from compose output.
    :return: The readiness state, UNKNOWN for blank or unrecognised input.
    """
    if not raw_status or not raw_status.strip():
        return ServiceState.UNKNOWN

    status = raw_status.lower()
    is_up = "running" in status or "up" in status
    if "restart" in status:
        return ServiceState.RESTARTING
    if is_up and "healthy" in status and "unhealthy" not in status:
        return ServiceState.HEALTHY
    if is_up:
        return ServiceState.RUNNING
    if "exit" in status or "stop" in status:
        return ServiceState.STOPPED
    return ServiceState.UNKNOWN


def parse_port_mappings(raw: Optional[str]) -> List[PortMapping]:
    """
    Parses a compose ports column, e.g. ``"0.0.0.0:9091->8080/tcp, :::9091->8080/tcp"``.

    Entries that publish nothing (``"8080/tcp"``), do not parse, or name a
    port outside 1..65535 are skipped.
    IPv4 and IPv6 bindings of the same port are both kept.

    :param raw: Comma separated port entries.
    :return: Port mappings in input order.
    """
    if not raw:
        return []

    mappings: List[PortMapping] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        match = PORT_PATTERN.match(entry)
        if not match:
            logger.debug("Skipping unpublished or malformed port entry %r", entry)
            continue
        protocol = match.group("protocol") or "tcp"
        host_ports = _expand_range(match.group("host"))
        container_ports = _expand_range(match.group("container"))
        if not host_ports or not container_ports:
            logger.debug("Skipping port entry outside 1..%d %r", MAX_PORT, entry)
            continue
        if len(host_ports) != len(container_ports):
            logger.debug("Skipping port range entry with mismatched lengths %r", entry)
            continue
        for host_port, container_port in zip(host_ports, container_ports):
            mappings.append(PortMapping(container_port=container_port, host_port=host_port, protocol=protocol))
    return mappings


def _expand_range(value: str) -> List[int]:
    if "-" not in value:
        start = end = int(value)
    else:
        start, end = (int(part) for part in value.split("-", 1))
    if start < 1 or end > MAX_PORT or end < start:
        return []
    return list(range(start, end + 1))


def parse_services_from_json_lines(raw: Optional[str], project_name: Optional[str] = None) -> Dict[str, ServiceInfo]:
    """
    Parses ``docker compose ps --format json`` output.

    Compose prints one JSON object per line; some v2 releases print a single
    JSON array instead, which is handled the same way. Each line is parsed on
    its own, so one corrupt line only loses that line.

    :param raw: Raw stdout of the ps command.
    :param project_name: Project the containers belong to, used to recover
        service names from container names.
    :return: Service name to ServiceInfo. For scaled services the first replica wins.
    """
    services: Dict[str, ServiceInfo] = {}
    if not raw or not raw.strip():
        return services

    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            decoded = json.loads(line)
        except ValueError as e:
            logger.warning("Skipping malformed compose ps line %r: %s", line[:200], e)
            continue

        entries = decoded if isinstance(decoded, list) else [decoded]
        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning("Skipping compose ps entry that is not an object: %r", entry)
                continue
            info = parse_service_info(entry, project_name)
            if info is None:
                logger.warning("Skipping compose ps entry without a service name: %r", entry)
                continue
            if info.name in services:
                logger.debug("Ignoring additional replica %s of service %s", info.container_name, info.name)
                continue
            services[info.name] = info
    return services


def parse_service_info(entry: Dict[str, Any], project_name: Optional[str] = None) -> Optional[ServiceInfo]:
    """
    Converts one decoded ps entry into a ServiceInfo.

    The service name comes from ``Service``, falling back to the container
    ``Name`` with project prefix and replica index removed.

    :param entry: A decoded JSON object.
    :param project_name: Project the container belongs to.
    :return: The service, or None if no service name can be determined.
    """
    container_name = _as_text(entry.get("Name")) or _as_text(entry.get("Names"))
    name = _as_text(entry.get("Service"))
    if not name and container_name:
        name = _service_from_container_name(container_name, project_name)
    if not name:
        return None

    raw_state = _as_text(entry.get("State")) or _as_text(entry.get("Status"))
    health = _as_text(entry.get("Health"))
    if health:
        raw_state = f"{raw_state} ({health})"

    publishers = entry.get("Publishers")
    if isinstance(publishers, list) and publishers:
        ports = _ports_from_publishers(publishers)
    else:
        ports = parse_port_mappings(_as_text(entry.get("Ports")))

    return ServiceInfo(
        name=name,
        container_id=_as_text(entry.get("ID")) or "unknown",
        container_name=container_name or None,
        state=parse_service_state(raw_state),
        ports=ports,
    )


def _ports_from_publishers(publishers: List[Any]) -> List[PortMapping]:
    mappings = []
    for publisher in publishers:
        if not isinstance(publisher, dict):
            continue
        try:
            host_port = int(publisher.get("PublishedPort") or 0)
            container_port = int(publisher.get("TargetPort") or 0)
        except (TypeError, ValueError):
            logger.debug("Skipping malformed publisher %r", publisher)
            continue
        if not 0 < host_port <= MAX_PORT or not 0 < container_port <= MAX_PORT:
            continue
        mappings.append(PortMapping(
            container_port=container_port,
            host_port=host_port,
            protocol=_as_text(publisher.get("Protocol")) or "tcp",
        ))
    return mappings


def _service_from_container_name(container_name: str, project_name: Optional[str]) -> Optional[str]:
    name = container_name.lstrip("/")
    if project_name:
        for separator in ("-", "_"):
            prefix = project_name + separator
            if name.startswith(prefix):
                rest = name[len(prefix):]
                match = re.match(rf"^(?P<service>.+){re.escape(separator)}\d+$", rest)
                return match.group("service") if match else (rest or None)
    # legacy docker-compose: {project}_{service}_{index}
    parts = name.split("_")
    if len(parts) >= 2:
        return parts[1] or None
    return name or None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value).strip()
