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
Parsers for Docker Compose YAML files.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import yaml

from ..exceptions import ConfigurationError
from ..MODELS.compose_file import ComposeFileModel, ComposeServiceDefinition
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Mapping[str, str]] = None):
        """
        Initializes the parser with an optional variable context for interpolation.

        :param context: Variables for ``${VAR}`` interpolation.
        """
        self.context = dict(context or {})

    def parse_files(self, compose_paths: Sequence[Union[str, Path]]) -> ComposeFileModel:
        """
        Parses and merges several compose files, in override order.

        :param compose_paths: Paths to the compose files.
        :return: The merged configuration.
        """
        merged = ComposeFileModel()
        for path in compose_paths:
            merged = merged.merged_with(self.parse(path))
        return merged

    def parse(self, compose_path: Union[str, Path]) -> ComposeFileModel:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed configuration.
        :raises ConfigurationError: If the file is missing or is not valid YAML.
        """
        path = Path(compose_path)
        if not path.is_file():
            raise ConfigurationError(f"compose file not found: {path}", operation="parse")
        return self.parse_from_string(path.read_text(encoding="utf-8"), source=str(path))

    def parse_from_string(self, content: str, source: str = "<string>") -> ComposeFileModel:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :param source: Name used in log and error messages.
        :return: Parsed configuration.
        """
        missing: List[str] = []
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context, missing=missing)
        except KeyError as e:
            raise ConfigurationError(f"{source}: {e.args[0]}", operation="parse") from None
        if missing:
            # compose substitutes an empty string and warns, so do the same
            logger.warning("%s: variables not set, defaulting to empty string: %s",
                           source, ", ".join(sorted(set(missing))))

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"{source} is not valid YAML: {e}", operation="parse") from None
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{source} must contain a mapping at the top level", operation="parse")

        raw_services = data.get('services') or {}
        if not isinstance(raw_services, dict):
            raise ConfigurationError(f"{source}: 'services' must be a mapping", operation="parse")
        services = {}
        for name, spec in raw_services.items():
            if not isinstance(spec or {}, dict):
                raise ConfigurationError(f"{source}: service '{name}' must be a mapping", operation="parse")
            services[str(name)] = self._parse_service(str(name), spec or {})

        return ComposeFileModel(services=services)

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ComposeServiceDefinition:
        """
        Parses a single service definition from a compose file.

        The healthcheck flag is only set when the file declares one, so merging
        an override file keeps the value from the base file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ComposeServiceDefinition instance.
        """
        fields: Dict[str, Any] = {"name": name}
        if 'healthcheck' in spec:
            fields["has_healthcheck"] = self._healthcheck_enabled(spec['healthcheck'])
        return ComposeServiceDefinition(**fields)

    @staticmethod
    def _healthcheck_enabled(healthcheck: Any) -> bool:
        if not isinstance(healthcheck, dict):
            return False
        if healthcheck.get('disable'):
            return False
        test = healthcheck.get('test')
        if isinstance(test, list) and test and test[0] == "NONE":
            return False
        return bool(test)
