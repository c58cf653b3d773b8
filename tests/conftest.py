import json
from datetime import datetime, timezone

import pytest

from composetest.RUNNERS.process_invoker import ProcessResult

pytest_plugins = ["pytester"]

SUBCOMMANDS = ("up", "down", "ps", "logs", "version")


def subcommand_of(command):
    return next((part.lstrip("-") for part in command if part.lstrip("-") in SUBCOMMANDS), None)


def ps_line(service, state="running", health="", ports=()):
    """One line of `docker compose ps --format json` output."""
    return json.dumps({
        "ID": f"{service}-id",
        "Name": f"proj-{service}-1",
        "Service": service,
        "State": state,
        "Health": health,
        "Publishers": [
            {"URL": "0.0.0.0", "TargetPort": target, "PublishedPort": published, "Protocol": "tcp"}
            for published, target in ports
        ],
    })


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start=0.0):
        self.time = start
        self.sleeps = []

    def monotonic(self):
        return self.time

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.time += seconds

    def now(self):
        return datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)


class FakeInvoker:
    """
    Records compose commands and answers them from canned results.

    ps answers are consumed in order; the last one repeats.
    """

    def __init__(self, ps_outputs=("",)):
        self.commands = []
        self.calls = []
        self.ps_outputs = list(ps_outputs)
        self.results = {}

    def respond(self, subcommand, exit_code=0, stdout="", stderr=""):
        self.results[subcommand] = (exit_code, stdout, stderr)

    def raise_on(self, subcommand, error):
        self.results[subcommand] = error

    def run(self, command, working_dir=None, timeout=None, env=None):
        command = [str(part) for part in command]
        self.commands.append(command)
        self.calls.append({"command": command, "working_dir": working_dir, "timeout": timeout, "env": env})
        subcommand = subcommand_of(command)
        if subcommand in self.results:
            result = self.results[subcommand]
            if isinstance(result, Exception):
                raise result
            exit_code, stdout, stderr = result
            return ProcessResult(command, exit_code, stdout, stderr)
        if subcommand == "ps":
            stdout = self.ps_outputs.pop(0) if len(self.ps_outputs) > 1 else self.ps_outputs[0]
            return ProcessResult(command, 0, stdout, "")
        return ProcessResult(command, 0, "", "")

    def subcommands(self):
        return [subcommand_of(c) for c in self.commands]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def compose_file(tmp_path):
    path = tmp_path / "docker-compose.yml"
    path.write_text(
        "services:\n"
        "  web:\n"
        "    image: nginx:latest\n"
        "    ports:\n"
        "      - \"8080:80\"\n"
        "    healthcheck:\n"
        "      test: [\"CMD\", \"curl\", \"-f\", \"http://localhost\"]\n"
        "  db:\n"
        "    image: postgres:16\n",
        encoding="utf-8",
    )
    return path
