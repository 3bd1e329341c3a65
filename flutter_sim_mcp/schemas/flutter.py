"""
Flutter process schemas.

Run options, process status snapshots and paginated log pages for the
`flutter run` supervisor.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from flutter_sim_mcp.schemas.base import StrictModel
from flutter_sim_mcp.schemas.types import PathStr

type ProcessStatus = Literal['starting', 'running', 'hot-reloading', 'stopped', 'failed']
"""Lifecycle of a supervised flutter process. 'stopped' and 'failed' are terminal."""


class FlutterRunOptions(StrictModel):
    """Launch options for FlutterProcessManager.start.

    All optional fields are untrusted input and validated before spawning.
    """

    worktree_path: PathStr
    device_id: str
    target: str | None = None  # Entry file relative to worktree_path, e.g. lib/main_dev.dart
    flavor: str | None = None
    additional_args: Sequence[str] | None = None


class FlutterProcessInfo(StrictModel):
    """Snapshot of the supervised process state."""

    pid: int  # 0 until the subprocess reports one
    status: ProcessStatus
    started_at: datetime
    stopped_at: datetime | None = None
    exit_code: int | None = None
    signal: str | None = None


class LogEntry(StrictModel):
    """Single buffered output line."""

    line: str
    timestamp: datetime
    index: int


class LogPage(StrictModel):
    """Page of buffered output.

    next_index is the index the next appended line will receive; pass it back
    as from_index to continue reading without gaps.
    """

    logs: Sequence[LogEntry]
    next_index: int
    total_lines: int


class ActionResult(StrictModel):
    """Outcome of a fire-and-forget command such as a keystroke or signal."""

    success: bool
    message: str


class LogFollowResult(StrictModel):
    """Lines received while following live output."""

    lines: Sequence[str]
    duration_seconds: float
    process_exited: bool  # True if following stopped because the process exited
