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
Managers for handling environment variables and .env file resolution.
"""
import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

from dotenv import dotenv_values

from ..UTILS.string_interpolation import merge_contexts

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Builds the environments compose commands and compose file interpolation see.
    """
    def __init__(self, base_env: Optional[Mapping[str, str]] = None):
        """
        Initializes the environment manager.

        :param base_env: Environment to start from; defaults to the current process environment.
        """
        self.base_env = dict(os.environ if base_env is None else base_env)

    def process_environment(self, extra_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Environment for a compose subprocess: the base environment plus explicit variables.

        Env files are not merged here; compose reads them itself via ``--env-file``.

        :param extra_env: Explicitly configured variables, which win.
        :return: The merged environment.
        """
        return merge_contexts(self.base_env, extra_env)

    def interpolation_context(self,
                              env_files: Sequence[Union[str, Path]],
                              extra_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Variables compose would use to interpolate the stack's files.

        Later env files override earlier ones; the process environment and
        explicit variables override env files, matching compose precedence.

        :param env_files: ``--env-file`` paths, in order.
        :param extra_env: Explicitly configured variables.
        :return: The merged variables.
        """
        file_values: Dict[str, str] = {}
        for env_file in env_files:
            path = Path(env_file)
            if not path.is_file():
                logger.warning("Env file %s does not exist, skipping", path)
                continue
            file_values.update(merge_contexts(dotenv_values(path)))
        return merge_contexts(file_values, self.base_env, extra_env)
