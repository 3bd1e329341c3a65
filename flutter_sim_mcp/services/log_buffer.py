"""Bounded, monotonically indexed buffer of process output lines."""

from __future__ import annotations

import collections
import itertools
from datetime import UTC, datetime

from flutter_sim_mcp.exceptions import InvalidArgumentError
from flutter_sim_mcp.schemas.flutter import LogEntry

__all__ = ['DEFAULT_MAX_LINES', 'LogBuffer', 'validate_page']

DEFAULT_MAX_LINES = 1000


def validate_page(from_index: int | None, limit: int) -> None:
    """Raise InvalidArgumentError for a negative from_index or a non-positive limit."""
    if from_index is not None and from_index < 0:
        raise InvalidArgumentError(f'from_index must be non-negative, got: {from_index}')
    if limit <= 0:
        raise InvalidArgumentError(f'limit must be positive, got: {limit}')


class LogBuffer:
    """
    Fixed-capacity FIFO of log entries.

    Indices increase by one per appended line and are never reused, even after
    eviction or clear(). A reader that remembers next_index can always resume
    without seeing a line twice; it may miss lines that were evicted meanwhile.
    """

    def __init__(self, max_lines: int = DEFAULT_MAX_LINES) -> None:
        if max_lines <= 0:
            raise ValueError(f'max_lines must be positive, got: {max_lines}')
        self.max_lines = max_lines
        self._logs: collections.deque[LogEntry] = collections.deque(maxlen=max_lines)
        self._next_index = 0

    def append(self, line: str) -> None:
        # deque(maxlen=...) evicts the oldest entry on overflow
        self._logs.append(LogEntry(line=line, timestamp=datetime.now(UTC), index=self._next_index))
        self._next_index += 1

    def get_logs(self, from_index: int | None = None, limit: int = 100) -> list[LogEntry]:
        """
        Return retained entries with index >= from_index, oldest first.

        Args:
            from_index: First index to return (default: oldest retained)
            limit: Maximum number of entries

        Raises:
            InvalidArgumentError: If from_index is negative or limit is not positive
        """
        validate_page(from_index, limit)

        # Retained indices are contiguous, so the offset follows from the oldest one
        start = 0
        if from_index is not None and self._logs:
            start = max(0, from_index - self._logs[0].index)
        return list(itertools.islice(self._logs, start, start + limit))

    def get_next_index(self) -> int:
        return self._next_index

    def get_total_lines(self) -> int:
        return len(self._logs)

    def clear(self) -> None:
        self._logs.clear()

    def get_recent_lines(self, count: int) -> list[str]:
        if count <= 0:
            return []
        return [entry.line for entry in list(self._logs)[-count:]]
