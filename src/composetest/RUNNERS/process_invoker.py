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
Execution of compose CLI processes with captured output and an execution timeout.
"""
import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import psutil

from ..exceptions import ProcessTimeout

logger = logging.getLogger(__name__)

# Exit status a shell reports when the executable does not exist
COMMAND_NOT_FOUND = 127


@dataclass
class ProcessResult:
    """Outcome of one finished process."""

    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = field(default=0.0, compare=False)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessInvoker:
    """
    Runs a command to completion and returns its exit code and output.

    The call blocks until the process exits or the timeout elapses. On
    timeout the process and all of its children are killed, because compose
    spawns helper processes that would otherwise outlive it.
    """
    def __init__(self, default_timeout: Optional[float] = None):
        """
        Initializes the invoker.

        Args:
            default_timeout (Optional[float]): Seconds a command may run when the caller passes no timeout.
        """
        self.default_timeout = default_timeout

    def run(self,
            command: Sequence[str],
            working_dir: Optional[Union[str, Path]] = None,
            timeout: Optional[float] = None,
            env: Optional[Dict[str, str]] = None) -> ProcessResult:
        """
        Runs a command.

        Args:
            command (Sequence[str]): Command and arguments to execute.
            working_dir (Optional[Union[str, Path]]): Directory to run the command in.
            timeout (Optional[float]): Seconds before the process tree is killed.
            env (Optional[Dict[str, str]]): Full environment for the process; inherited when None.

        Returns:
            ProcessResult: Exit code and captured output.

        Raises:
            ProcessTimeout: If the process did not exit in time.
        """
        command = [str(part) for part in command]
        timeout = timeout if timeout is not None else self.default_timeout
        logger.debug("Executing: %s (cwd=%s)", " ".join(command), working_dir or ".")

        started = time.monotonic()
        try:
            process = subprocess.Popen(
                command,
                cwd=str(working_dir) if working_dir else None,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
            )
        except OSError as e:
            logger.debug("Failed to start %s: %s", command[0], e)
            return ProcessResult(command, COMMAND_NOT_FOUND, "", str(e))

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Command did not exit within %ss, killing: %s", timeout, " ".join(command))
            self._kill_tree(process.pid)
            stdout, stderr = process.communicate()
            raise ProcessTimeout(command, timeout, stdout or "", stderr or "") from None

        duration = time.monotonic() - started
        logger.debug("Exit code %s after %.2fs: %s", process.returncode, duration, command[0])
        return ProcessResult(command, process.returncode, stdout or "", stderr or "", duration)

    @staticmethod
    def _kill_tree(pid: int) -> None:
        """
        Kills a process and all of its descendants.

        Args:
            pid (int): Root process id.
        """
        try:
            parent = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return
        processes = parent.children(recursive=True) + [parent]
        for proc in processes:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass
        psutil.wait_procs(processes, timeout=5)
