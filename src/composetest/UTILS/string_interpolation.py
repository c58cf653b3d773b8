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
Utilities for compose-style variable interpolation.
"""
import re
from typing import Dict, List, Mapping, Optional


class EnvironmentInterpolator:
    """
    Interpolates variables the way compose does before it parses a file.
    Supports $$, $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR+value} and ${VAR:?message} / ${VAR?message}.
    """
    # Group "escape": $$
    # Group "bare": $VAR
    # Groups "name", "op", "arg": ${VAR[op arg]}
    PATTERN = re.compile(
        r"\$(?:(?P<escape>\$)"
        r"|(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
        r"|\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:?[-+?])(?P<arg>[^}]*))?\})"
    )

    @classmethod
    def interpolate(cls,
                    template: str,
                    context: Mapping[str, str],
                    missing: Optional[List[str]] = None) -> str:
        """
        Interpolates variables in ``template``.

        :param template: Text containing variable references.
        :param context: Variable values.
        :param missing: When given, unset variables without a default are
            recorded here and replaced with an empty string, as compose does.
        :return: The interpolated text.
        :raises KeyError: If a variable is unset, has no default and ``missing``
            is None, or a ``?`` reference names an unset variable.
        """
        def replace(match: "re.Match[str]") -> str:
            if match.group("escape"):
                return "$"
            name = match.group("bare") or match.group("name")
            op = match.group("op")
            arg = match.group("arg") or ""
            value = context.get(name)
            # ':' variants treat an empty value like an unset one
            is_set = bool(value) if op and op.startswith(":") else value is not None

            if op in (":-", "-"):
                return value if is_set else arg
            if op in (":+", "+"):
                return arg if is_set else ""
            if op in (":?", "?"):
                if not is_set:
                    raise KeyError(f"Variable {name} is required: {arg or 'not set'}")
                return value
            if value is not None:
                return value
            if missing is None:
                raise KeyError(f"Variable {name} not found in context")
            missing.append(name)
            return ""

        return cls.PATTERN.sub(replace, template)


def merge_contexts(*contexts: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Merges variable contexts; later ones win.
    """
    merged: Dict[str, str] = {}
    for context in contexts:
        if context:
            merged.update({k: v for k, v in context.items() if v is not None})
    return merged
