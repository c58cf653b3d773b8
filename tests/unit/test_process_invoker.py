import sys
from pathlib import Path

import pytest

from composetest.exceptions import ProcessTimeout
from composetest.RUNNERS.process_invoker import COMMAND_NOT_FOUND, ProcessInvoker


def test_run_captures_output(tmp_path):
    script = "import os, sys; print(os.getcwd()); print(os.environ['GREETING'], file=sys.stderr); sys.exit(3)"

    result = ProcessInvoker().run([sys.executable, "-c", script], working_dir=tmp_path,
                                  env={"GREETING": "hello"}, timeout=30)

    assert result.exit_code == 3
    assert not result.ok
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()
    assert result.stderr.strip() == "hello"
    assert result.duration > 0


def test_missing_executable():
    result = ProcessInvoker().run(["definitely-not-a-compose-binary", "version"])

    assert result.exit_code == COMMAND_NOT_FOUND
    assert result.stderr


def test_timeout_kills_process():
    invoker = ProcessInvoker(default_timeout=0.5)

    with pytest.raises(ProcessTimeout) as exc_info:
        invoker.run([sys.executable, "-c", "import time; print('started', flush=True); time.sleep(30)"])

    assert exc_info.value.timeout == 0.5
    assert "did not exit within 0.5s" in str(exc_info.value)
    assert "started" in exc_info.value.stdout
