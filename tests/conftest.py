"""Shared test fixtures."""
import asyncio
import itertools
from pathlib import Path
from unittest.mock import patch

import pytest

from startall.config import Config
from startall.models.command import Command
from startall.session import Session

_fake_pids = itertools.count(70000)


def make_command(name: str) -> Command:
    return Command(name=name, display_name=name, invocation=f"npm run {name}")


class FakeStdin:
    """Stands in for a StreamWriter."""

    def __init__(self):
        self.written = []
        self.closed = False

    def write(self, data: bytes):
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self.written.append(data)

    def is_closing(self) -> bool:
        return self.closed


class FakeProcess:
    """Minimal asyncio.subprocess.Process lookalike. Create inside a running loop."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", exit_code=None):
        self.pid = next(_fake_pids)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = FakeStdin()
        self.returncode = None
        self._exited = asyncio.Event()
        if stdout:
            self.stdout.feed_data(stdout)
        if stderr:
            self.stderr.feed_data(stderr)
        if exit_code is not None:
            self.finish(exit_code)

    def finish(self, code: int):
        if self.returncode is None:
            self.returncode = code
            self.stdout.feed_eof()
            self.stderr.feed_eof()
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Spawner that records every spawn and hands out FakeProcesses."""

    def __init__(self):
        self.scripts = {}
        self.spawned = []
        self.envs = []
        self.by_pid = {}
        self.fail = set()

    async def __call__(self, command, env):
        if command.name in self.fail:
            raise FileNotFoundError(f"cannot run {command.name}")
        process = FakeProcess(**self.scripts.get(command.name, {}))
        self.spawned.append((command.name, process))
        self.envs.append(env)
        self.by_pid[process.pid] = process
        return process

    def names(self):
        return [name for name, _ in self.spawned]

    def terminate_tree(self, pid):
        process = self.by_pid.get(pid)
        if process is not None:
            process.finish(-15)
        return []

    def kill_tree(self, pid):
        process = self.by_pid.get(pid)
        if process is not None:
            process.finish(-9)
        return []


@pytest.fixture
def spawner():
    """A FakeSpawner with process-tree signalling routed to its fake processes."""
    fake = FakeSpawner()
    with patch("startall.proc.terminate_tree", side_effect=fake.terminate_tree), \
            patch("startall.proc.kill_tree", side_effect=fake.kill_tree):
        yield fake


@pytest.fixture
def make_session(tmp_path, spawner):
    """Factory for sessions backed by the fake spawner and a temp config file."""

    def factory(names=("web", "api", "db"), **config_fields) -> Session:
        commands = [make_command(name) for name in names]
        config = Config(**config_fields)
        return Session.create(commands, config, Path(tmp_path) / "startall.json", spawner=spawner)

    return factory


async def settle(seconds: float = 0.01):
    """Let pending tasks and callbacks run."""
    await asyncio.sleep(seconds)
