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
Error taxonomy for stack orchestration.

Every error names the stack (when known), the compose project and the
operation that was attempted, so a failing test run points straight at the
stack that misbehaved.
"""
from typing import Dict, List, Optional, Sequence


class ComposeError(Exception):
    """
    Base class for all orchestration errors.
    """
    def __init__(self,
                 message: str,
                 operation: Optional[str] = None,
                 project_name: Optional[str] = None,
                 stack_name: Optional[str] = None):
        self.operation = operation
        self.project_name = project_name
        self.stack_name = stack_name
        self.reason = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        context = []
        if self.stack_name:
            context.append(f"stack '{self.stack_name}'")
        if self.project_name:
            context.append(f"project '{self.project_name}'")
        if not self.operation and not context:
            return message
        prefix = f"{self.operation} failed" if self.operation else "Failed"
        if context:
            prefix += " for " + ", ".join(context)
        return f"{prefix}: {message}"


class ConfigurationError(ComposeError):
    """
    Invalid stack, wait or logs configuration. Raised before any subprocess is spawned.
    """


class OrchestrationFailure(ComposeError):
    """
    The compose CLI exited non-zero (or hung) while bringing a stack up or down.
    """
    def __init__(self,
                 message: str,
                 operation: Optional[str] = None,
                 project_name: Optional[str] = None,
                 stack_name: Optional[str] = None,
                 exit_code: Optional[int] = None,
                 stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, operation=operation, project_name=project_name, stack_name=stack_name)


class TimeoutFailure(ComposeError):
    """
    Services did not reach the target state before the wait timeout elapsed.

    ``pending`` maps every service that was still not ready to the state it was
    last observed in.
    """
    def __init__(self,
                 target_state,
                 pending: Dict[str, object],
                 timeout_seconds: float,
                 project_name: Optional[str] = None,
                 stack_name: Optional[str] = None):
        self.target_state = target_state
        self.pending = dict(pending)
        self.timeout_seconds = timeout_seconds
        details = ", ".join(f"{name} ({_state_label(state)})" for name, state in sorted(self.pending.items()))
        message = (
            f"services not {_state_label(target_state).upper()} after {timeout_seconds:g}s: {details}"
        )
        super().__init__(message, operation="wait", project_name=project_name, stack_name=stack_name)


class ProcessTimeout(ComposeError):
    """
    A subprocess did not exit within its execution timeout and was killed.
    """
    def __init__(self, command: Sequence[str], timeout: float, stdout: str = "", stderr: str = ""):
        self.command: List[str] = list(command)
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"'{' '.join(self.command)}' did not exit within {timeout:g}s")


class StackTeardownWarning(UserWarning):
    """
    A stack could not be torn down cleanly; containers may still be running.
    """


def _state_label(state) -> str:
    return getattr(state, "value", str(state))
