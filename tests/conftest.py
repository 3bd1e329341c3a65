"""
Shared fixtures: in-memory device controller, fake subprocesses and a
Flutter project on disk.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Sequence
from pathlib import Path

import attrs
import pytest

from flutter_sim_mcp.exceptions import DeviceControlError
from flutter_sim_mcp.protocols import ExitCallback, LineCallback
from flutter_sim_mcp.services.flutter_process import FlutterProcessManager
from flutter_sim_mcp.services.session import SessionManager
from flutter_sim_mcp.services.test_runner import FlutterTestManager

# ==============================================================================
# Device Controller
# ==============================================================================


class FakeDeviceController:
    """Records simulator operations.

    Operations listed in `failing` raise for every device; (operation, udid)
    pairs in `failing_calls` raise for that device only.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failing: set[str] = set()
        self.failing_calls: set[tuple[str, str]] = set()
        self._created = 0

    def _record(self, operation: str, argument: str) -> None:
        self.calls.append((operation, argument))
        if operation in self.failing or (operation, argument) in self.failing_calls:
            raise DeviceControlError(operation, 'simulated failure')

    async def create_instance(self, device_type: str) -> str:
        self._record('create', device_type)
        self._created += 1
        return f'UDID-{self._created}'

    async def boot(self, device_id: str) -> None:
        self._record('boot', device_id)

    async def shutdown(self, device_id: str) -> None:
        self._record('shutdown', device_id)

    async def delete(self, device_id: str) -> None:
        self._record('delete', device_id)

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]


# ==============================================================================
# Subprocesses
# ==============================================================================


@attrs.define
class FakeProcess:
    """SpawnedProcess stand-in driven by the test."""

    command: str
    args: list[str]
    cwd: Path
    on_stdout: LineCallback
    on_stderr: LineCallback
    on_exit: ExitCallback
    pid: int | None = 4242
    exit_on_quit: bool = True
    exit_on_kill: bool = True
    writes: list[str] = attrs.Factory(list)
    signals: list[int] = attrs.Factory(list)
    stdin_closed: bool = False
    returncode: int | None = None
    _exited: asyncio.Event = attrs.Factory(asyncio.Event)

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def write(self, data: str) -> bool:
        if self.stdin_closed or self.exited:
            return False
        self.writes.append(data)
        if data == 'q\n' and self.exit_on_quit:
            self.finish(0)
        return True

    def close_stdin(self) -> None:
        self.stdin_closed = True

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self.returncode

    def kill(self, sig: int) -> bool:
        if self.exited:
            return False
        self.signals.append(sig)
        if self.exit_on_kill:
            self.finish(None, signal.Signals(sig).name)
        return True

    def emit(self, *lines: str) -> None:
        for line in lines:
            self.on_stdout(line)

    def emit_stderr(self, *lines: str) -> None:
        for line in lines:
            self.on_stderr(line)

    def finish(self, code: int | None, sig: str | None = None) -> None:
        if self.exited:
            return
        self.returncode = code
        self._exited.set()
        self.on_exit(code, sig)


class FakeSpawner:
    """SpawnFunction stand-in that hands out FakeProcess objects."""

    def __init__(self, **process_options: object) -> None:
        self.processes: list[FakeProcess] = []
        self.error: OSError | None = None
        self.process_options = process_options

    async def __call__(
        self,
        command: str,
        args: Sequence[str],
        *,
        cwd: Path,
        on_stdout: LineCallback,
        on_stderr: LineCallback,
        on_exit: ExitCallback,
    ) -> FakeProcess:
        if self.error is not None:
            raise self.error
        process = FakeProcess(
            command=command,
            args=list(args),
            cwd=cwd,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            on_exit=on_exit,
            **self.process_options,  # type: ignore[arg-type]
        )
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


async def settle() -> None:
    """Let scheduled tasks run until they block."""
    for _ in range(5):
        await asyncio.sleep(0)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A minimal Flutter project inside tmp_path."""
    root = tmp_path / 'my_app'
    (root / 'lib').mkdir(parents=True)
    (root / 'pubspec.yaml').write_text('name: my_app\n')
    (root / 'lib' / 'main.dart').write_text('void main() {}\n')
    (root / 'lib' / 'main_dev.dart').write_text('void main() {}\n')
    (root / 'README.md').write_text('# my_app\n')
    return root


@pytest.fixture
def devices() -> FakeDeviceController:
    return FakeDeviceController()


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def process_manager(spawner: FakeSpawner) -> FlutterProcessManager:
    return FlutterProcessManager(10, spawn=spawner, stop_timeout=0.2, reload_settle_seconds=0.05)


@pytest.fixture
def session_manager(tmp_path: Path, devices: FakeDeviceController, spawner: FakeSpawner) -> SessionManager:
    return SessionManager(
        str(tmp_path),
        device_controller=devices,
        process_manager_factory=lambda: FlutterProcessManager(spawn=spawner, stop_timeout=0.2),
        test_manager_factory=lambda: FlutterTestManager(spawn=spawner),
    )
