"""
Flutter test run tracker.

Runs `flutter test --machine` in the background and folds the JSON reporter
events into pass/fail counts and per-test captured output. Each run is
identified by a numeric reference that is unique for the lifetime of the
process, so clients can poll progress without knowing which session owns it.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import re
import signal
from collections.abc import Sequence
from pathlib import Path

import attrs
import pydantic

from flutter_sim_mcp.exceptions import InvalidArgumentError, TestReferenceNotFoundError
from flutter_sim_mcp.protocols import SpawnedProcess, SpawnFunction
from flutter_sim_mcp.schemas.testing import (
    HANDLED_EVENT_TYPES,
    DoneEvent,
    ErrorEvent,
    GroupEvent,
    MachineEvent,
    MachineEventAdapter,
    PrintEvent,
    TestDoneEvent,
    TestLog,
    TestProgress,
    TestRunOptions,
    TestStartEvent,
)
from flutter_sim_mcp.services.exec import spawn_streaming

__all__ = ['FlutterTestManager', 'TestRun', 'build_test_args']

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r'[A-Za-z0-9_-]+')
CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')

# Name reported for runner output that does not belong to any test
RUNNER_LOG_NAME = 'flutter test'

# Shared by every tracker so references never collide across sessions
_reference_counter = itertools.count(1)


def build_test_args(options: TestRunOptions) -> list[str]:
    """
    Validate test options and build the `flutter test` argument vector.

    Raises:
        InvalidArgumentError: Non-positive timeout, empty or control-character
            name filter, or a tag outside [A-Za-z0-9_-]
    """
    if options.timeout_minutes <= 0:
        raise InvalidArgumentError(f'timeout must be positive, got: {options.timeout_minutes}')

    args = ['test', '--machine']

    if options.test_name_match is not None:
        if not options.test_name_match or CONTROL_CHARS.search(options.test_name_match):
            raise InvalidArgumentError(f'Invalid test name filter: {options.test_name_match!r}')
        args.extend(['--name', options.test_name_match])

    if options.tags:
        for tag in options.tags:
            if not TAG_PATTERN.fullmatch(tag):
                raise InvalidArgumentError(
                    f'Invalid tag: {tag}. Tags must contain only letters, numbers, hyphens, and underscores.'
                )
        args.extend(['--tags', ','.join(options.tags)])

    return args


@attrs.define
class TestRun:
    """Progress and captured output of one `flutter test` execution."""

    __test__ = False  # not a pytest test class

    reference: int
    tests_complete: int = 0
    tests_total: int = 0
    passes: int = 0
    fails: int = 0
    skipped: int = 0
    complete: bool = False
    timed_out: bool = False
    launch_failed: bool = False
    exit_code: int | None = None
    passing_tests: list[str] = attrs.Factory(list)
    failing_tests: list[str] = attrs.Factory(list)
    runner_output: list[str] = attrs.Factory(list)

    # Keyed by the reporter's test ID
    _names: dict[int, str] = attrs.Factory(dict)
    _output: dict[int, list[str]] = attrs.Factory(dict)
    # (test ID, passed) in completion order
    _results: list[tuple[int, bool]] = attrs.Factory(list)

    task: asyncio.Task[None] | None = None
    process: SpawnedProcess | None = None

    def handle_line(self, line: str) -> None:
        """Consume one stdout line of the machine reporter."""
        stripped = line.strip()
        if not stripped:
            return
        if not stripped.startswith('{'):
            self.runner_output.append(line)
            return

        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            self.runner_output.append(line)
            return

        if not isinstance(payload, dict) or payload.get('type') not in HANDLED_EVENT_TYPES:
            return

        try:
            event = MachineEventAdapter.validate_python(payload)
        except pydantic.ValidationError as e:
            logger.debug(f'Ignoring malformed {payload.get("type")} event in run {self.reference}: {e}')
            return

        self.apply(event)

    def handle_stderr(self, line: str) -> None:
        if line.strip():
            self.runner_output.append(line)

    def apply(self, event: MachineEvent) -> None:
        match event:
            case GroupEvent(group=group):
                # Root group of each suite carries the suite's test count
                if group.parent_id is None:
                    self.tests_total += group.test_count
            case TestStartEvent(test=test):
                self._names[test.id] = test.name
            case PrintEvent(test_id=test_id, message=message):
                self._output.setdefault(test_id, []).append(message)
            case ErrorEvent(test_id=test_id, error=error, stack_trace=stack_trace):
                captured = self._output.setdefault(test_id, [])
                captured.append(error)
                if stack_trace:
                    captured.append(stack_trace)
            case TestDoneEvent():
                self._record_result(event)
            case DoneEvent():
                self.complete = True

    def _record_result(self, event: TestDoneEvent) -> None:
        # Hidden entries are the synthetic "loading <file>" tests
        if event.hidden:
            return

        self.tests_complete += 1
        name = self._names.get(event.test_id, f'test {event.test_id}')

        if event.skipped:
            self.skipped += 1
        elif event.result == 'success':
            self.passes += 1
            self.passing_tests.append(name)
            self._results.append((event.test_id, True))
        else:
            self.fails += 1
            self.failing_tests.append(name)
            self._results.append((event.test_id, False))

    def finish(self, exit_code: int | None) -> None:
        if self.exit_code is None:
            self.exit_code = exit_code
        self.complete = True

    def progress(self, include_all_names: bool) -> TestProgress:
        return TestProgress(
            reference=self.reference,
            tests_complete=self.tests_complete,
            tests_total=self.tests_total,
            passes=self.passes,
            fails=self.fails,
            skipped=self.skipped,
            complete=self.complete,
            timed_out=self.timed_out,
            passing_tests=list(self.passing_tests) if include_all_names else None,
            failing_tests=list(self.failing_tests) if include_all_names else None,
        )

    def logs(self, show_all: bool) -> list[TestLog]:
        result = [
            TestLog(
                test_name=self._names.get(test_id, f'test {test_id}'),
                output='\n'.join(self._output.get(test_id, [])),
            )
            for test_id, passed in self._results
            if show_all or not passed
        ]

        # Compilation and loading errors never reach a test; surface them
        # whenever the run failed without a failing test to explain it
        failed_run = self.timed_out or self.launch_failed or (self.exit_code is not None and self.exit_code != 0)
        if self.runner_output and (show_all or (failed_run and not self.fails)):
            result.append(TestLog(test_name=RUNNER_LOG_NAME, output='\n'.join(self.runner_output)))

        return result


class FlutterTestManager:
    """Tracks asynchronous `flutter test` runs for one session."""

    def __init__(
        self,
        *,
        spawn: SpawnFunction = spawn_streaming,
        flutter_command: str = 'flutter',
    ) -> None:
        self._spawn = spawn
        self._flutter_command = flutter_command
        self._runs: dict[int, TestRun] = {}

    def start(self, options: TestRunOptions) -> int:
        """
        Start a test run in the background and return its reference.

        Must be called from a running event loop. Progress is available
        immediately through get_progress.

        Raises:
            InvalidArgumentError: Invalid timeout, name filter or tags
        """
        args = build_test_args(options)

        reference = next(_reference_counter)
        run = TestRun(reference=reference)
        self._runs[reference] = run

        logger.info(f'Starting test run {reference} in {options.worktree_path}')
        run.task = asyncio.get_running_loop().create_task(
            self._execute(run, args, Path(options.worktree_path), options.timeout_minutes * 60)
        )
        return reference

    async def _execute(self, run: TestRun, args: Sequence[str], cwd: Path, timeout_seconds: float) -> None:
        try:
            process = await self._spawn(
                self._flutter_command,
                args,
                cwd=cwd,
                on_stdout=run.handle_line,
                on_stderr=run.handle_stderr,
                on_exit=lambda code, sig: run.finish(code),
            )
        except OSError as e:
            logger.error(f'Failed to launch test run {run.reference}: {e}')
            run.launch_failed = True
            run.runner_output.append(f'Failed to launch {self._flutter_command}: {e}')
            run.finish(None)
            return

        run.process = process
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout_seconds)
        except TimeoutError:
            logger.warning(f'Test run {run.reference} timed out after {timeout_seconds:.0f}s, killing')
            run.timed_out = True
            process.kill(signal.SIGKILL)
            run.finish(None)
        except asyncio.CancelledError:
            logger.info(f'Test run {run.reference} cancelled, killing')
            process.kill(signal.SIGKILL)
            run.finish(None)
            raise
        finally:
            run.process = None

        logger.info(
            f'Test run {run.reference} finished: {run.passes} passed, {run.fails} failed, {run.skipped} skipped'
        )

    def _get_run(self, reference: int) -> TestRun:
        run = self._runs.get(reference)
        if run is None:
            raise TestReferenceNotFoundError(reference)
        return run

    def get_progress(self, reference: int, include_all_names: bool = False) -> TestProgress:
        """
        Raises:
            TestReferenceNotFoundError: Unknown reference
        """
        return self._get_run(reference).progress(include_all_names)

    def get_logs(self, reference: int, show_all: bool = False) -> list[TestLog]:
        """
        Captured output per test. Failing tests only unless show_all is set.

        Raises:
            TestReferenceNotFoundError: Unknown reference
        """
        return self._get_run(reference).logs(show_all)

    def get_all_references(self) -> list[int]:
        return list(self._runs)

    async def cancel_all(self) -> None:
        """Kill every run that is still executing and wait for it to settle."""
        tasks = [run.task for run in self._runs.values() if run.task is not None and not run.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
