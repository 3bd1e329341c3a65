"""
Flutter process supervisor.

Owns one `flutter run` subprocess per session:
- validates untrusted launch options before anything is spawned
- tracks the lifecycle (starting -> running <-> hot-reloading -> stopped|failed)
- buffers output and fans it out to live subscribers
- sends the interactive keystrokes flutter understands (r, R, q)

Security model:
- Arguments are passed as an argv vector, never through a shell
- The entry file must resolve inside the project directory and be a .dart file
- Flavor names are restricted to [A-Za-z0-9_-]
- Extra arguments must be on a fixed allow-list or be a well-formed
  --dart-define=KEY=VALUE; this bounds what the flutter tool itself can be
  asked to do
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
import signal
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path

import attrs

from flutter_sim_mcp.exceptions import (
    AlreadyRunningError,
    InvalidEntryTypeError,
    InvalidFlavorError,
    PathEscapeError,
    TargetNotFoundError,
    UnsafeArgumentError,
)
from flutter_sim_mcp.protocols import LineCallback, SpawnedProcess, SpawnFunction
from flutter_sim_mcp.schemas.flutter import (
    FlutterProcessInfo,
    FlutterRunOptions,
    LogPage,
    ProcessStatus,
)
from flutter_sim_mcp.services.exec import spawn_streaming
from flutter_sim_mcp.services.log_buffer import DEFAULT_MAX_LINES, LogBuffer

__all__ = [
    'ALLOWED_FLUTTER_ARGS',
    'FlutterProcessManager',
    'build_run_args',
]

logger = logging.getLogger(__name__)

ALLOWED_FLUTTER_ARGS = (
    '--debug',
    '--release',
    '--profile',
    '--no-sound-null-safety',
    '--enable-software-rendering',
    '--verbose',
    '-v',
)
DART_DEFINE_PREFIX = '--dart-define='
DART_DEFINE_PATTERN = re.compile(r'[A-Za-z_][A-Za-z0-9_]*=.*')
FLAVOR_PATTERN = re.compile(r'[A-Za-z0-9_-]+')
ENTRY_FILE_SUFFIX = '.dart'

# Substrings flutter prints once a reload has been applied
RELOAD_MARKERS = ('Hot reload', 'Reloaded')

# Single-keystroke commands understood by `flutter run` on stdin
KEY_QUIT = 'q\n'
KEY_HOT_RELOAD = 'r\n'
KEY_HOT_RESTART = 'R\n'

DEFAULT_STOP_TIMEOUT_SECONDS = 5.0
DEFAULT_RELOAD_SETTLE_SECONDS = 1.0


# ==============================================================================
# Launch Validation
# ==============================================================================


def _validate_target(worktree_path: Path, target: str) -> None:
    try:
        target_path = (worktree_path / target).resolve()
    except ValueError as e:
        # e.g. an embedded NUL byte
        raise PathEscapeError(repr(target)) from e

    # Compare by path segments: "../../etc/passwd" must not pass even though
    # the literal string never mentions /etc
    if not target_path.is_relative_to(worktree_path.resolve()):
        raise PathEscapeError(target)

    if not target_path.exists():
        raise TargetNotFoundError(target)

    if target_path.suffix != ENTRY_FILE_SUFFIX:
        raise InvalidEntryTypeError(target)


def _validate_flavor(flavor: str) -> None:
    if not FLAVOR_PATTERN.fullmatch(flavor):
        raise InvalidFlavorError(flavor)


def _validate_additional_args(additional_args: Sequence[str]) -> None:
    for arg in additional_args:
        if arg in ALLOWED_FLUTTER_ARGS:
            continue
        # KEY must be an identifier; the value is opaque to us because it is
        # never interpreted by a shell
        if arg.startswith(DART_DEFINE_PREFIX) and DART_DEFINE_PATTERN.fullmatch(arg[len(DART_DEFINE_PREFIX) :]):
            continue
        raise UnsafeArgumentError(arg, ALLOWED_FLUTTER_ARGS)


def build_run_args(options: FlutterRunOptions) -> list[str]:
    """
    Validate run options and build the `flutter run` argument vector.

    Args:
        options: Untrusted launch options

    Returns:
        Arguments: run -d <device> [-t <target>] [--flavor <flavor>] [...extra]

    Raises:
        PathEscapeError: target resolves outside the project
        TargetNotFoundError: target does not exist
        InvalidEntryTypeError: target is not a .dart file
        InvalidFlavorError: flavor contains unsafe characters
        UnsafeArgumentError: an extra argument is not allowed
    """
    if options.target:
        _validate_target(Path(options.worktree_path), options.target)
    if options.flavor:
        _validate_flavor(options.flavor)
    if options.additional_args:
        _validate_additional_args(options.additional_args)

    args = ['run', '-d', options.device_id]
    if options.target:
        args.extend(['-t', options.target])
    if options.flavor:
        args.extend(['--flavor', options.flavor])
    if options.additional_args:
        args.extend(options.additional_args)
    return args


# ==============================================================================
# Process Supervisor
# ==============================================================================


@attrs.define
class FlutterProcessState:
    """Mutable lifecycle state of one supervised process."""

    started_at: datetime
    pid: int = 0
    status: ProcessStatus = 'starting'
    stopped_at: datetime | None = None
    exit_code: int | None = None
    signal: str | None = None

    def snapshot(self) -> FlutterProcessInfo:
        return FlutterProcessInfo(
            pid=self.pid,
            status=self.status,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            exit_code=self.exit_code,
            signal=self.signal,
        )


class FlutterProcessManager:
    """
    Supervisor for a single `flutter run` subprocess.

    At most one subprocess is attached at a time. The handle is released when
    the process exits, after which start() may be called again.
    """

    def __init__(
        self,
        max_log_lines: int = DEFAULT_MAX_LINES,
        *,
        spawn: SpawnFunction = spawn_streaming,
        flutter_command: str = 'flutter',
        stop_timeout: float = DEFAULT_STOP_TIMEOUT_SECONDS,
        reload_settle_seconds: float = DEFAULT_RELOAD_SETTLE_SECONDS,
    ) -> None:
        self._spawn = spawn
        self._flutter_command = flutter_command
        self._stop_timeout = stop_timeout
        self._reload_settle_seconds = reload_settle_seconds

        self._process: SpawnedProcess | None = None
        self._state: FlutterProcessState | None = None
        self._log_buffer = LogBuffer(max_log_lines)
        self._subscribers: dict[int, LineCallback] = {}
        self._subscriber_tokens = itertools.count()
        self._reload_timer: asyncio.TimerHandle | None = None
        self._start_lock = asyncio.Lock()

    @property
    def is_attached(self) -> bool:
        return self._process is not None

    async def start(self, options: FlutterRunOptions) -> FlutterProcessInfo:
        """
        Validate options and spawn `flutter run`.

        Args:
            options: Launch options (worktree, device, optional target/flavor/args)

        Returns:
            Snapshot of the new process state

        Raises:
            AlreadyRunningError: A subprocess is still attached
            FlutterSimError: Any validation failure (nothing is spawned)
            OSError: The flutter executable could not be launched
        """
        async with self._start_lock:
            if self._process is not None:
                raise AlreadyRunningError(self._state.pid if self._state else 0)

            logger.info(f'Starting Flutter process in {options.worktree_path} on device {options.device_id}')
            args = build_run_args(options)

            state = FlutterProcessState(started_at=datetime.now(UTC))
            self._cancel_reload_timer()
            self._state = state

            try:
                process = await self._spawn(
                    self._flutter_command,
                    args,
                    cwd=Path(options.worktree_path),
                    on_stdout=self._handle_output,
                    on_stderr=self._handle_output,
                    on_exit=lambda code, sig: self._handle_exit(state, code, sig),
                )
            except OSError as e:
                logger.error(f'Failed to launch {self._flutter_command}: {e}')
                state.status = 'failed'
                state.stopped_at = datetime.now(UTC)
                raise

            self._process = process
            if process.pid:
                state.pid = process.pid
                state.status = 'running'
                logger.info(f'Flutter process started (PID {process.pid})')

            return state.snapshot()

    # --------------------------------------------------------------------------
    # Event handlers
    # --------------------------------------------------------------------------

    def _handle_output(self, data: str) -> None:
        for line in data.split('\n'):
            if not line.strip():
                continue

            self._log_buffer.append(line)

            # Snapshot: a subscriber may unsubscribe itself during delivery
            for subscriber in list(self._subscribers.values()):
                try:
                    subscriber(line)
                except Exception as e:
                    logger.error(f'Error in log subscriber: {e!r}')

            self._detect_status_changes(line)

    def _detect_status_changes(self, line: str) -> None:
        state = self._state
        if state is None or state.status not in ('running', 'hot-reloading'):
            return

        if any(marker in line for marker in RELOAD_MARKERS):
            state.status = 'hot-reloading'
            self._cancel_reload_timer()
            loop = asyncio.get_running_loop()
            self._reload_timer = loop.call_later(self._reload_settle_seconds, self._finish_reload, state)

    def _finish_reload(self, state: FlutterProcessState) -> None:
        self._reload_timer = None
        if state is self._state and state.status == 'hot-reloading':
            state.status = 'running'

    def _cancel_reload_timer(self) -> None:
        if self._reload_timer is not None:
            self._reload_timer.cancel()
            self._reload_timer = None

    def _handle_exit(self, state: FlutterProcessState, code: int | None, sig: str | None) -> None:
        logger.info(f'Flutter process exited (code={code}, signal={sig})')

        state.status = 'stopped' if code == 0 else 'failed'
        state.stopped_at = datetime.now(UTC)
        state.exit_code = code
        state.signal = sig

        if state is self._state:
            self._cancel_reload_timer()
            self._process = None

    # --------------------------------------------------------------------------
    # Commands
    # --------------------------------------------------------------------------

    def stop(self) -> bool:
        """Ask flutter to quit gracefully. Does not wait for the exit."""
        if self._process is None:
            logger.warning('No Flutter process to stop')
            return False

        logger.info(f'Stopping Flutter process (PID {self._process.pid})')
        self._process.write(KEY_QUIT)
        self._process.close_stdin()
        return True

    def hot_reload(self) -> bool:
        if self._process is None:
            logger.warning('No Flutter process for hot reload')
            return False

        logger.info(f'Triggering hot reload (PID {self._process.pid})')
        return self._process.write(KEY_HOT_RELOAD)

    def hot_restart(self) -> bool:
        if self._process is None:
            logger.warning('No Flutter process for hot restart')
            return False

        logger.info(f'Triggering hot restart (PID {self._process.pid})')
        return self._process.write(KEY_HOT_RESTART)

    def kill(self, sig: int = signal.SIGTERM) -> bool:
        if self._process is None:
            return False

        logger.info(f'Killing Flutter process (PID {self._process.pid}, signal {sig})')
        return self._process.kill(sig)

    # --------------------------------------------------------------------------
    # Queries
    # --------------------------------------------------------------------------

    def get_status(self) -> FlutterProcessInfo | None:
        return self._state.snapshot() if self._state else None

    def get_logs(self, from_index: int | None = None, limit: int = 100) -> LogPage:
        """
        Read buffered output.

        Raises:
            InvalidArgumentError: If from_index is negative or limit is not positive
        """
        logs = self._log_buffer.get_logs(from_index, limit)
        return LogPage(
            logs=logs,
            next_index=self._log_buffer.get_next_index(),
            total_lines=self._log_buffer.get_total_lines(),
        )

    def subscribe(self, callback: LineCallback) -> Callable[[], None]:
        """
        Register a live output listener.

        Each subscriber receives lines in production order. A failing
        subscriber is logged and skipped; delivery to the others continues.

        Returns:
            Function that removes this registration (idempotent)
        """
        token = next(self._subscriber_tokens)
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def clear_logs(self) -> None:
        self._log_buffer.clear()

    # --------------------------------------------------------------------------
    # Teardown
    # --------------------------------------------------------------------------

    async def cleanup(self) -> None:
        """
        Stop the process (graceful, then forced) and drop buffered output.

        Safe to call when no process is attached or when the process exits
        concurrently.
        """
        logger.debug('Cleaning up Flutter process manager')

        self._subscribers.clear()
        self._cancel_reload_timer()

        # Capture the handle: the exit handler clears self._process
        process = self._process
        if process is not None:
            self.stop()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
            except TimeoutError:
                logger.warning('Flutter process did not stop gracefully, killing')
                process.kill(signal.SIGKILL)
            except Exception as e:
                logger.error(f'Error waiting for process: {e}')

        self.clear_logs()
