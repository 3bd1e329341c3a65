"""
Subprocess primitives built on asyncio.

- run_command: one-shot command with captured output (simctl and friends)
- spawn_streaming: long-lived process with line callbacks, writable stdin
  and an exit callback

Commands are always executed from an argument vector, never through a shell.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Sequence
from pathlib import Path

import attrs
import psutil

from flutter_sim_mcp.protocols import ExitCallback, LineCallback

__all__ = [
    'CommandResult',
    'StreamingProcess',
    'run_command',
    'signal_process_tree',
    'spawn_streaming',
]

logger = logging.getLogger(__name__)

# flutter prints long single-line JSON payloads in machine mode
STREAM_LIMIT_BYTES = 1024 * 1024

# How long to keep draining output after the process itself has exited.
# Grandchildren can inherit the pipes and hold them open indefinitely.
OUTPUT_DRAIN_TIMEOUT_SECONDS = 1.0


@attrs.define(frozen=True)
class CommandResult:
    """Outcome of a one-shot command."""

    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(args: Sequence[str], *, timeout: float) -> CommandResult:
    """
    Run a command to completion and capture its output.

    Args:
        args: Command and arguments
        timeout: Seconds to wait before killing the command

    Returns:
        CommandResult with decoded stdout/stderr

    Raises:
        TimeoutError: If the command does not finish in time (it is killed first)
        FileNotFoundError: If the executable does not exist
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        logger.warning(f'Command timed out after {timeout}s, killing: {" ".join(args)}')
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        raise

    return CommandResult(
        args=list(args),
        stdout=stdout.decode('utf-8', errors='replace'),
        stderr=stderr.decode('utf-8', errors='replace'),
        returncode=process.returncode if process.returncode is not None else -1,
    )


def signal_process_tree(pid: int, sig: int) -> bool:
    """
    Send a signal to a process and all of its descendants.

    `flutter run` delegates to a dart VM which in turn launches the build
    tooling; signalling only the top-level pid leaves those behind.

    Returns:
        False if the top-level process no longer exists
    """
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return False

    for child in children:
        with contextlib.suppress(psutil.NoSuchProcess):
            child.send_signal(sig)

    try:
        parent.send_signal(sig)
    except psutil.NoSuchProcess:
        return False
    return True


@attrs.define
class StreamingProcess:
    """Handle returned by spawn_streaming (implements SpawnedProcess)."""

    process: asyncio.subprocess.Process
    exit_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid

    def write(self, data: str) -> bool:
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            logger.debug(f'stdin of PID {self.pid} is closed, dropping write')
            return False
        stdin.write(data.encode('utf-8'))
        return True

    def close_stdin(self) -> None:
        stdin = self.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

    async def wait(self) -> int | None:
        # Wait on the watcher rather than the process so that callers resume
        # only after the exit callback has run.
        if self.exit_task is not None:
            await asyncio.shield(self.exit_task)
        else:
            await self.process.wait()
        return self.process.returncode

    def kill(self, sig: int) -> bool:
        if self.process.returncode is not None:
            return False
        return signal_process_tree(self.process.pid, sig)


async def _pump_lines(stream: asyncio.StreamReader, callback: LineCallback, name: str) -> None:
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            # readline discards the oversized line before raising
            logger.warning(f'Dropped {name} line longer than {STREAM_LIMIT_BYTES} bytes')
            continue
        if not raw:
            return
        line = raw.decode('utf-8', errors='replace').rstrip('\r\n')
        try:
            callback(line)
        except Exception as e:
            logger.error(f'Error in {name} handler: {e!r}')


def _describe_returncode(returncode: int | None) -> tuple[int | None, str | None]:
    """Split an asyncio returncode into (exit code, signal name)."""
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, f'SIG{-returncode}'


async def _watch_exit(
    process: asyncio.subprocess.Process,
    readers: Sequence[asyncio.Task[None]],
    on_exit: ExitCallback,
) -> None:
    returncode = await process.wait()

    _, pending = await asyncio.wait(readers, timeout=OUTPUT_DRAIN_TIMEOUT_SECONDS)
    for task in pending:
        task.cancel()

    code, sig = _describe_returncode(returncode)
    try:
        on_exit(code, sig)
    except Exception as e:
        logger.error(f'Error in exit handler: {e!r}')


async def spawn_streaming(
    command: str,
    args: Sequence[str],
    *,
    cwd: Path,
    on_stdout: LineCallback,
    on_stderr: LineCallback,
    on_exit: ExitCallback,
) -> StreamingProcess:
    """
    Spawn a long-lived process and stream its output line by line.

    Output callbacks receive one line at a time (without the trailing newline).
    All output read before the process exits is delivered before on_exit runs.

    Args:
        command: Executable name or path
        args: Argument vector (no shell interpretation)
        cwd: Working directory
        on_stdout: Called for each stdout line
        on_stderr: Called for each stderr line
        on_exit: Called once with (exit code, signal name)

    Returns:
        StreamingProcess handle

    Raises:
        FileNotFoundError: If the executable does not exist
    """
    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=STREAM_LIMIT_BYTES,
    )
    assert process.stdout is not None and process.stderr is not None

    readers = [
        asyncio.create_task(_pump_lines(process.stdout, on_stdout, 'stdout')),
        asyncio.create_task(_pump_lines(process.stderr, on_stderr, 'stderr')),
    ]
    handle = StreamingProcess(process=process)
    handle.exit_task = asyncio.create_task(_watch_exit(process, readers, on_exit))

    logger.debug(f'Spawned {command} (PID {process.pid}) in {cwd}')
    return handle
