"""
Test run schemas.

Options for `flutter test` runs, progress snapshots, captured per-test output,
and the subset of the `flutter test --machine` JSON reporter protocol that the
tracker consumes.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated, Literal

import pydantic

from flutter_sim_mcp.schemas.base import StrictModel
from flutter_sim_mcp.schemas.types import ExternalEventModel, PathStr

DEFAULT_TEST_TIMEOUT_MINUTES = 10

# ==============================================================================
# Operation Schemas
# ==============================================================================


class TestRunOptions(StrictModel):
    """Options for FlutterTestManager.start."""

    __test__ = False  # not a pytest test class

    worktree_path: PathStr
    test_name_match: str | None = None  # Regular expression passed to --name
    timeout_minutes: float = DEFAULT_TEST_TIMEOUT_MINUTES
    tags: Sequence[str] | None = None


class TestProgress(StrictModel):
    """Incremental progress of a test run."""

    __test__ = False

    reference: int
    tests_complete: int
    tests_total: int
    passes: int
    fails: int
    skipped: int
    complete: bool
    timed_out: bool
    passing_tests: Sequence[str] | None = None  # Only when names were requested
    failing_tests: Sequence[str] | None = None


class TestRunStarted(StrictModel):
    """Reference of a test run started in the background."""

    __test__ = False

    reference: int
    session_id: str


class TestLog(StrictModel):
    """Captured output of a single test."""

    __test__ = False

    test_name: str
    output: str


# ==============================================================================
# Machine Reporter Events (flutter test --machine)
# ==============================================================================


class MachineTest(ExternalEventModel):
    id: int
    name: str


class MachineGroup(ExternalEventModel):
    id: int
    parent_id: int | None = pydantic.Field(default=None, alias='parentID')
    test_count: int = pydantic.Field(default=0, alias='testCount')


class GroupEvent(ExternalEventModel):
    type: Literal['group']
    group: MachineGroup


class TestStartEvent(ExternalEventModel):
    __test__ = False

    type: Literal['testStart']
    test: MachineTest


class PrintEvent(ExternalEventModel):
    type: Literal['print']
    test_id: int = pydantic.Field(alias='testID')
    message: str


class ErrorEvent(ExternalEventModel):
    type: Literal['error']
    test_id: int = pydantic.Field(alias='testID')
    error: str
    stack_trace: str = pydantic.Field(default='', alias='stackTrace')


class TestDoneEvent(ExternalEventModel):
    __test__ = False

    type: Literal['testDone']
    test_id: int = pydantic.Field(alias='testID')
    result: Literal['success', 'failure', 'error']
    hidden: bool = False
    skipped: bool = False


class DoneEvent(ExternalEventModel):
    type: Literal['done']
    success: bool | None = None


MachineEvent = Annotated[
    GroupEvent | TestStartEvent | PrintEvent | ErrorEvent | TestDoneEvent | DoneEvent,
    pydantic.Field(discriminator='type'),
]

MachineEventAdapter: pydantic.TypeAdapter[MachineEvent] = pydantic.TypeAdapter(MachineEvent)

HANDLED_EVENT_TYPES = frozenset({'group', 'testStart', 'print', 'error', 'testDone', 'done'})
