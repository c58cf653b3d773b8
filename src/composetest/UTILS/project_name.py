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
Utilities for deriving compose project names.
"""
import re
import secrets
from datetime import datetime
from typing import Optional


def sanitize_project_name(name: str) -> str:
    """
    Turns an arbitrary string into a valid compose project name.

    Compose accepts lowercase letters, digits, dashes and underscores, and the
    name must start with a letter or digit.

    :param name: Raw name, e.g. ``"MyStack-TestClass"``.
    :return: The sanitised name, ``"test-project"`` if nothing usable remains.
    """
    sanitized = re.sub(r"[^a-z0-9_-]", "-", name.lower())
    sanitized = re.sub(r"-+", "-", sanitized).strip("-")
    if sanitized and not sanitized[0].isalnum():
        sanitized = "test-" + sanitized
    return sanitized or "test-project"


def unique_project_name(base: str, owner: Optional[str], now: datetime) -> str:
    """
    Derives a per-scope project name so concurrent scopes do not share containers.

    :param base: Configured project name.
    :param owner: Test class or test function owning the scope.
    :param now: Current time; the HHMMSS part makes names readable in ``docker ps``.
    :return: ``{base}-{owner}-{HHMMSS}-{random}``, sanitised.
    """
    parts = [base]
    if owner:
        parts.append(owner)
    parts.append(now.strftime("%H%M%S"))
    parts.append(secrets.token_hex(2))
    return sanitize_project_name("-".join(parts))
