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
Models for the parts of a compose file the engine inspects before starting a stack.
"""
from typing import Dict

from pydantic import BaseModel


class ComposeServiceDefinition(BaseModel):
    """
    A service declared in a compose file.
    """
    name: str
    has_healthcheck: bool = False


class ComposeFileModel(BaseModel):
    """
    The merged view of the services declared by one or more compose files.
    """
    services: Dict[str, ComposeServiceDefinition] = {}

    def merged_with(self, other: "ComposeFileModel") -> "ComposeFileModel":
        """
        Overlays ``other`` on this model, later files overriding earlier ones per service.
        """
        services = dict(self.services)
        for name, definition in other.services.items():
            if name in services:
                overrides = definition.model_dump(exclude_unset=True, exclude={"name"})
                services[name] = services[name].model_copy(update=overrides)
            else:
                services[name] = definition
        return ComposeFileModel(services=services)
