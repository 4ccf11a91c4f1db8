"""Host-side process runner for tracked shell commands.

cmd-tracker runtime module

This module provides:
- Shell command spawning in an isolated session/process group
- Merged stdout/stderr buffered in memory, readable from any offset
- A non-blocking status probe for the poll scheduler
- Reliable termination (SIGTERM -> timeout -> SIGKILL) of the process group

Key design points:
- POSIX: start_new_session=True to create a new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- A process reports a terminal status once the shell exited and its output
  was drained, or once drain_timeout passed after the exit. Background
  children (``make run &``) may keep the pipe open long after the shell
  is gone; they stay in the process group and are terminated with it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..models import ProcessStatus

__all__ = [
    "OutputBuffer",
    "ProcessRunner",
    "ProcessSpec",
    "RunningProcess",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_DRAIN_TIMEOUT = 1.0  # seconds to wait for EOF after the shell exited

READ_CHUNK_SIZE = 4096


def default_shell() -> str:
    """Shell used to run command lines."""
    if IS_WINDOWS:
        return os.environ.get("COMSPEC", "cmd.exe")
    return os.environ.get("SHELL") or "/bin/sh"


class OutputBuffer:
    """In-memory output of a running process.

    Grows as the process writes; readers pass the offset they already
    consumed and receive everything after it.
    """

    def __init__(self) -> None:
        self._data = bytearray()

    def append(self, chunk: bytes) -> None:
        self._data.extend(chunk)

    def read_from(self, offset: int) -> bytes:
        if offset >= len(self._data):
            return b""
        return bytes(self._data[offset:])

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a command to run.

    Attributes:
        command: Command line, interpreted by the shell
        cwd: Working directory for the process
        env: Environment variables (None = inherit parent)
        shell: Shell executable (None = runner default)
    """

    command: str
    cwd: Path
    env: Mapping[str, str] | None = None
    shell: str | None = None


@dataclass(eq=False)
class RunningProcess:
    """Handle of a spawned command.

    Hashable by identity, so it can serve as the process handle of a spawn
    notification.

    Attributes:
        reader: Completes once the shell exited and the output was drained
            (or drain_timeout passed)
        copier: Copies stdout into ``output`` until EOF
    """

    spec: ProcessSpec
    process: asyncio.subprocess.Process
    output: OutputBuffer = field(default_factory=OutputBuffer)
    reader: asyncio.Task[None] | None = field(default=None, repr=False)
    copier: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def output_open(self) -> bool:
        """Whether some process of the group still holds the output pipe."""
        return self.copier is not None and not self.copier.done()

    @property
    def settled(self) -> bool:
        """Shell exited and nothing holds the output pipe any more."""
        return self.process.returncode is not None and not self.output_open

    def poll(self) -> ProcessStatus:
        """Current status; terminal once the exit was observed by the reader."""
        if self.reader is not None and not self.reader.done():
            return ProcessStatus.running()
        code = self.process.returncode
        if code is None:
            return ProcessStatus.running()
        if code < 0:
            return ProcessStatus.signaled(-code)
        return ProcessStatus.exited(code)

    async def wait(self) -> ProcessStatus:
        """Wait until the process reports a terminal status."""
        if self.reader is not None:
            await asyncio.shield(self.reader)
        await self.process.wait()
        return self.poll()

    async def wait_settled(self) -> None:
        """Wait until the shell exited and the output pipe was closed."""
        await self.process.wait()
        if self.copier is not None:
            await asyncio.shield(self.copier)


@dataclass
class ProcessRunner:
    """Cross-platform command runner with isolation and reliable termination.

    Example:
        runner = ProcessRunner()
        proc = await runner.spawn(ProcessSpec("make -j8", Path("/src")))
        status = proc.poll()
        runner.request_termination(proc)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    shell: str | None = None
    _processes: set[RunningProcess] = field(default_factory=set, repr=False)
    _terminations: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    async def spawn(self, spec: ProcessSpec) -> RunningProcess:
        """Start a command and begin buffering its output.

        Args:
            spec: Process specification

        Returns:
            Handle of the running process

        Raises:
            OSError: If the shell cannot be started
        """
        kwargs = self._build_subprocess_kwargs(spec)
        argv = self._build_argv(spec)

        # stdin=DEVNULL: never inherit the server's stdio channel
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=spec.cwd,
            **kwargs,
        )
        running = RunningProcess(spec=spec, process=process)
        running.copier = asyncio.create_task(
            self._copy_output(running), name=f"output-{process.pid}"
        )
        running.reader = asyncio.create_task(
            self._watch_exit(running), name=f"exit-{process.pid}"
        )
        for task in (running.copier, running.reader):
            task.add_done_callback(lambda _, r=running: self._release(r))
        self._processes.add(running)

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"command={spec.command!r} cwd={spec.cwd}"
        )
        return running

    def _build_argv(self, spec: ProcessSpec) -> list[str]:
        shell = spec.shell or self.shell or default_shell()
        if IS_WINDOWS:
            return [shell, "/c", spec.command]
        return [shell, "-c", spec.command]

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    async def _copy_output(self, running: RunningProcess) -> None:
        """Copy stdout into the output buffer until EOF."""
        stdout = running.process.stdout
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            running.output.append(chunk)

    async def _watch_exit(self, running: RunningProcess) -> None:
        """Reap the shell, then give the output a bounded time to drain."""
        process = running.process
        await process.wait()
        if running.copier is not None and not running.copier.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(running.copier), timeout=self.drain_timeout
                )
            except asyncio.TimeoutError:
                logger.debug(
                    f"Output of pid={process.pid} still held open by "
                    f"background processes {self.drain_timeout}s after exit"
                )
        logger.debug(
            f"Subprocess completed pid={process.pid} "
            f"returncode={process.returncode}"
        )

    def _release(self, running: RunningProcess) -> None:
        if running.reader is not None and not running.reader.done():
            return
        if running.output_open:
            return
        self._processes.discard(running)

    def live_processes(self) -> list[RunningProcess]:
        """Processes whose shell runs or whose group still holds the output."""
        return [p for p in self._processes if not p.settled]

    def request_termination(self, process_handle: RunningProcess) -> None:
        """Ask a process to terminate without waiting for it.

        The termination runs as a background task; the poll scheduler
        observes the resulting exit.
        """
        task = asyncio.get_running_loop().create_task(
            self.terminate(process_handle),
            name=f"terminate-{process_handle.pid}",
        )
        self._terminations.add(task)
        task.add_done_callback(self._terminations.discard)

    async def terminate(self, running: RunningProcess) -> None:
        """Terminate a process group gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows) to the group
        2. Wait up to term_timeout for the group to exit and close the output
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit

        The group is signalled even when the shell already exited, as long
        as background children still hold the output pipe.
        """
        process = running.process
        pid = process.pid
        if running.settled:
            return
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                await self._windows_terminate(process)
            else:
                await self._posix_signal(process, signal.SIGTERM)

            try:
                await asyncio.wait_for(running.wait_settled(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                if process.returncode is None:
                    process.kill()
            else:
                await self._posix_signal(process, signal.SIGKILL)

            try:
                await asyncio.wait_for(running.wait_settled(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def _posix_signal(
        self,
        process: asyncio.subprocess.Process,
        signum: signal.Signals,
    ) -> None:
        """Send a signal to the process group on POSIX systems.

        start_new_session makes the shell the group leader, so the group id
        equals its pid and stays valid after the shell itself was reaped.
        """
        try:
            os.killpg(process.pid, signum)
            logger.debug(f"Sent {signum.name} to process group pgid={process.pid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            if process.returncode is None:
                process.send_signal(signum)

    async def _windows_terminate(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            if process.returncode is None:
                process.terminate()

    async def aclose(self) -> None:
        """Terminate every live process group and stop buffering output."""
        live = self.live_processes()
        if live:
            await asyncio.gather(
                *(self.terminate(p) for p in live), return_exceptions=True
            )
        if self._terminations:
            await asyncio.gather(*list(self._terminations), return_exceptions=True)

        # Output held open by processes that escaped the group
        pending = [
            task
            for p in list(self._processes)
            for task in (p.copier, p.reader)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
