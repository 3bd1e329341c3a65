"""
Shared protocols for flutter-sim-mcp services.

The session layer talks to the outside world through two seams: a device
controller (simulator lifecycle) and a spawn primitive (streaming
subprocesses). Both are Protocols so tests can substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

type LineCallback = Callable[[str], None]
"""Receives one output line per call, without the trailing newline."""

type ExitCallback = Callable[[int | None, str | None], None]
"""Receives (exit code, signal name) when the subprocess terminates."""


class LoggerProtocol(Protocol):
    """
    Protocol for async logger - enables tools to report to any sink.

    Implementations:
    - DualLogger (mcp/utils.py): Logs to the server log and the MCP client
    """

    async def info(self, message: str) -> None: ...
    async def warning(self, message: str) -> None: ...
    async def error(self, message: str) -> None: ...


class DeviceController(Protocol):
    """Lifecycle control for emulated device instances."""

    async def create_instance(self, device_type: str) -> str:
        """Create a device of the given type and return its identifier."""
        ...

    async def boot(self, device_id: str) -> None: ...
    async def shutdown(self, device_id: str) -> None: ...
    async def delete(self, device_id: str) -> None: ...


class SpawnedProcess(Protocol):
    """Handle to a running subprocess with a writable stdin."""

    @property
    def pid(self) -> int | None: ...

    def write(self, data: str) -> bool:
        """Write to stdin. Returns False if stdin is no longer writable."""
        ...

    def close_stdin(self) -> None: ...

    async def wait(self) -> int | None:
        """Wait for the process to exit and return its exit code."""
        ...

    def kill(self, sig: int) -> bool:
        """Send a signal. Returns False if the process is already gone."""
        ...


class SpawnFunction(Protocol):
    """Starts a subprocess with line-oriented output callbacks."""

    async def __call__(
        self,
        command: str,
        args: Sequence[str],
        *,
        cwd: Path,
        on_stdout: LineCallback,
        on_stderr: LineCallback,
        on_exit: ExitCallback,
    ) -> SpawnedProcess: ...
