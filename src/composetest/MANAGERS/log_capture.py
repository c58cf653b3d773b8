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
Writing captured container logs to a file or to the logging system.
"""
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def write_captured_logs(text: str, output_file: Optional[Path], project_name: str) -> Optional[Path]:
    """
    Stores a log capture.

    With an output file the text is written there in full (UTF-8, replacing
    any earlier capture); without one each line goes to the ``composetest``
    logger at INFO.

    :param text: Captured log text.
    :param output_file: Destination file, or None.
    :param project_name: Compose project the logs came from.
    :return: The file written, if any.
    """
    if output_file is None:
        if not text:
            logger.info("No logs captured for project %s", project_name)
            return None
        for line in text.splitlines():
            logger.info("%s | %s", project_name, line)
        return None

    try:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(text, encoding="utf-8")
    except OSError as e:
        logger.warning("Could not write logs of project %s to %s: %s", project_name, output_file, e)
        return None
    logger.info("Logs of project %s written to %s", project_name, output_file)
    return output_file
