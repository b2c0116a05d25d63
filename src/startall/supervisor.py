"""Supervisor for the dashboard's long-running commands.

Every command runs as its own OS process in a new session. Output is read
from the stdout/stderr pipes on the event loop and appended to the shared
OutputLog line by line. Lifecycle calls (start/stop/restart) never block:
spawning runs as a task, and SIGKILL escalation and delayed restarts are
scheduled on the loop.
"""
import asyncio
import logging
import os
from collections import deque
from functools import partial
from typing import Awaitable, Callable, Deque, Dict, Iterable, List, Optional

import psutil

from . import proc as proctree
from .models.command import Command, RunState, RunStatus
from .output import OutputLog

logger = logging.getLogger(__name__)

DEFAULT_RESTART_DELAY = 0.1  # lets the old instance release its port
DEFAULT_KILL_GRACE = 1.0
DRAIN_TIMEOUT = 1.0
READ_CHUNK = 4096
ONE_OFF_CAPACITY = 1000

Spawner = Callable[[Command, Dict[str, str]], Awaitable[asyncio.subprocess.Process]]


def command_env() -> Dict[str, str]:
    """Inherited environment plus flags that keep child output colorized."""
    env = dict(os.environ)
    env["FORCE_COLOR"] = "1"
    env["COLORTERM"] = "truecolor"
    return env


async def spawn_command(command: Command, env: Dict[str, str]) -> asyncio.subprocess.Process:
    """Start a command through the shell with all three standard streams piped."""
    logger.debug(f"Running: {command.invocation}")
    return await asyncio.create_subprocess_shell(
        command.invocation,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
        start_new_session=True,
    )


async def read_lines(stream: asyncio.StreamReader, emit: Callable[[str], None],
                     gate: Optional[asyncio.Event] = None) -> None:
    """Forward each non-blank line of a byte stream to `emit`.

    Partial lines are kept until the rest arrives. While `gate` is cleared the
    reader holds at most one chunk and stops consuming, so unread output backs
    up into the pipe instead of into memory.
    """
    pending = b""
    while True:
        chunk = await stream.read(READ_CHUNK)
        if gate is not None:
            await gate.wait()
        if not chunk:
            break
        pending += chunk
        *complete, pending = pending.split(b"\n")
        for raw in complete:
            _emit_line(raw, emit)
    if pending:
        _emit_line(pending, emit)


def _emit_line(raw: bytes, emit: Callable[[str], None]) -> None:
    text = raw.rstrip(b"\r").decode("utf-8", errors="replace")
    if text.strip():
        emit(text)


async def _drain(readers: List[asyncio.Task]) -> None:
    if readers:
        await asyncio.wait(readers, timeout=DRAIN_TIMEOUT)


def _force_kill(pid: int) -> None:
    try:
        proctree.kill_tree(pid)
    except (psutil.Error, OSError) as e:
        logger.warning(f"Failed to kill process tree {pid}: {e}")


class OneOffRun:
    """A command executed once, outside the persistent set.

    Output goes to the run's own buffer, never to the main log.
    """

    def __init__(self, command: Command, capacity: int = ONE_OFF_CAPACITY):
        self.command = command
        self.lines: Deque[str] = deque(maxlen=capacity)
        self.status = RunStatus.RUNNING
        self.exit_code: Optional[int] = None
        self.pid: Optional[int] = None
        self.task: Optional[asyncio.Task] = None
        self.cancelled = False
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def done(self) -> bool:
        return self.status != RunStatus.RUNNING

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self.pid = process.pid
        if self.cancelled:
            _force_kill(process.pid)

    def cancel(self) -> None:
        """Kill the run's process tree. Safe to call more than once."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._process is not None and self._process.returncode is None:
            logger.info(f"Cancelling one-off run of {self.command.name}")
            _force_kill(self._process.pid)
        if self.status == RunStatus.RUNNING:
            self.status = RunStatus.STOPPED


class ProcessSupervisor:
    """Owns the live processes and run states of all dashboard commands."""

    def __init__(self, commands: Iterable[Command], log: OutputLog,
                 spawner: Spawner = spawn_command,
                 restart_delay: float = DEFAULT_RESTART_DELAY,
                 kill_grace: float = DEFAULT_KILL_GRACE):
        self.commands: Dict[str, Command] = {command.name: command for command in commands}
        self.log = log
        self.restart_delay = restart_delay
        self.kill_grace = kill_grace
        self.on_change: Optional[Callable[[], None]] = None

        self._spawner = spawner
        self._states: Dict[str, RunState] = {}
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._generations: Dict[str, int] = {}
        self._restarts: Dict[str, asyncio.TimerHandle] = {}
        self._one_offs: List[OneOffRun] = []
        self._flowing = asyncio.Event()
        self._flowing.set()

    # State queries

    def state(self, name: str) -> RunState:
        return self._states.get(name) or RunState()

    def states(self) -> Dict[str, RunState]:
        return dict(self._states)

    def is_running(self, name: str) -> bool:
        return self.state(name).status == RunStatus.RUNNING

    @property
    def streams_paused(self) -> bool:
        return not self._flowing.is_set()

    # Lifecycle

    def start(self, name: str) -> Optional[asyncio.Task]:
        """Start a command unless it is already running.

        Returns the task that spawns and then watches the process.
        """
        command = self.commands.get(name)
        if command is None:
            logger.warning(f"Unknown command: {name}")
            return None
        if self.is_running(name):
            return None

        generation = self._bump(name)
        self._states[name] = RunState(status=RunStatus.RUNNING)
        self._notify()
        return asyncio.get_running_loop().create_task(self._run(command, generation))

    async def _run(self, command: Command, generation: int) -> None:
        name = command.name
        try:
            process = await self._spawner(command, command_env())
        except OSError as e:
            if self._generations.get(name) == generation:
                logger.error(f"Failed to start {name}: {e}")
                self._states[name] = RunState(status=RunStatus.CRASHED)
                self._emit(name, f"Failed to start: {e}")
            return

        if self._generations.get(name) != generation:
            # Stopped while spawning
            _force_kill(process.pid)
            await process.wait()
            return

        self._processes[name] = process
        self._states[name].pid = process.pid
        logger.info(f"Started {name} (PID: {process.pid})")
        self._notify()

        readers = [
            asyncio.create_task(read_lines(stream, partial(self._emit, name), self._flowing))
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]
        code = await process.wait()
        if self._generations.get(name) != generation:
            return

        self._processes.pop(name, None)
        status = RunStatus.EXITED if code == 0 else RunStatus.CRASHED
        self._states[name] = RunState(status=status, exit_code=code)
        logger.info(f"{name} exited with code {code}")
        # Output held back by paused streams is logged before the exit line
        await self._flowing.wait()
        await _drain(readers)
        self._emit(name, f"Process exited with code {code}")

    def stop(self, name: str) -> bool:
        """Stop a running command and its whole process tree.

        SIGTERM goes out now; survivors get SIGKILL after the grace period.
        Returns False if there was nothing to stop.
        """
        self._cancel_restart(name)
        if not self.is_running(name):
            return False

        self._bump(name)
        process = self._processes.pop(name, None)
        if process is not None and process.returncode is None:
            self._terminate(process.pid)
        self._states[name] = RunState(status=RunStatus.STOPPED)
        logger.info(f"Stopped {name}")
        self._emit(name, "Process stopped")
        return True

    def _terminate(self, pid: int) -> None:
        try:
            procs = proctree.terminate_tree(pid)
        except (psutil.Error, OSError) as e:
            logger.warning(f"SIGTERM failed for {pid}: {e}")
            _force_kill(pid)
            return
        if procs:
            asyncio.get_running_loop().call_later(self.kill_grace, proctree.kill_survivors, procs)

    def restart(self, name: str) -> None:
        """Stop, then start again after `restart_delay`."""
        if name not in self.commands:
            return
        self.stop(name)
        loop = asyncio.get_running_loop()
        self._restarts[name] = loop.call_later(self.restart_delay, self._restart_due, name)

    def _restart_due(self, name: str) -> None:
        self._restarts.pop(name, None)
        self.start(name)

    def _cancel_restart(self, name: str) -> None:
        handle = self._restarts.pop(name, None)
        if handle is not None:
            handle.cancel()

    def toggle(self, name: str) -> None:
        if self.is_running(name):
            self.stop(name)
        else:
            self.start(name)

    def start_all(self, names: Iterable[str]) -> None:
        for name in names:
            self.start(name)

    def stop_all(self) -> None:
        for name in list(self._states):
            self.stop(name)

    def restart_all(self) -> None:
        for name in [name for name, state in self._states.items() if state.status == RunStatus.RUNNING]:
            self.restart(name)

    # Input and one-off runs

    def send_input(self, name: str, text: str) -> bool:
        """Write a line to a command's stdin and echo it into the log."""
        process = self._processes.get(name)
        if process is None or process.returncode is not None:
            return False
        stdin = process.stdin
        if stdin is None or stdin.is_closing():
            return False
        try:
            stdin.write((text + "\n").encode())
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as e:
            logger.warning(f"stdin write to {name} failed: {e}")
            self._emit(name, f"stdin error: {e}")
            return False
        self._emit(name, f"> {text}")
        return True

    def execute_once(self, name: str) -> Optional[OneOffRun]:
        """Run a command once with output captured in a transient buffer."""
        command = self.commands.get(name)
        if command is None:
            logger.warning(f"Unknown command: {name}")
            return None
        run = OneOffRun(command)
        self._one_offs.append(run)
        run.task = asyncio.get_running_loop().create_task(self._run_once(run))
        return run

    async def _run_once(self, run: OneOffRun) -> None:
        def emit(text: str) -> None:
            run.lines.append(text)
            self._notify()

        try:
            process = await self._spawner(run.command, command_env())
        except OSError as e:
            logger.error(f"Failed to run {run.command.name}: {e}")
            run.status = RunStatus.CRASHED
            emit(f"Failed to start: {e}")
            return

        run.attach(process)
        readers = [
            asyncio.create_task(read_lines(stream, emit))
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]
        code = await process.wait()
        await _drain(readers)
        run.exit_code = code
        if not run.cancelled:
            run.status = RunStatus.EXITED if code == 0 else RunStatus.CRASHED
            emit(f"Process exited with code {code}")
        if run in self._one_offs:
            self._one_offs.remove(run)
        self._notify()

    # Backpressure

    def pause_streams(self) -> None:
        """Stop reading child output; it waits in the OS pipes until resumed."""
        logger.debug("Pausing output streams")
        self._flowing.clear()

    def resume_streams(self) -> None:
        logger.debug("Resuming output streams")
        self._flowing.set()

    # Teardown

    def shutdown_all(self) -> None:
        """Kill every tracked process tree immediately. Idempotent."""
        for handle in self._restarts.values():
            handle.cancel()
        self._restarts.clear()

        processes = list(self._processes.items())
        self._processes.clear()
        for name, process in processes:
            if process.returncode is None:
                _force_kill(process.pid)

        for name, state in self._states.items():
            if state.status == RunStatus.RUNNING:
                self._bump(name)
                self._states[name] = RunState(status=RunStatus.STOPPED)

        for run in self._one_offs:
            run.cancel()
        self._one_offs.clear()
        self._flowing.set()

    # Helpers

    def _bump(self, name: str) -> int:
        generation = self._generations.get(name, 0) + 1
        self._generations[name] = generation
        return generation

    def _emit(self, name: str, text: str) -> None:
        self.log.append(name, text)
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()
