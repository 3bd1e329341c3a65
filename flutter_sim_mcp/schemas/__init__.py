"""
Schemas for service inputs and results.

Pydantic models returned by services and MCP tools, plus the machine-reporter
event models consumed by the test tracker.
"""

from __future__ import annotations

from flutter_sim_mcp.schemas.flutter import (
    ActionResult,
    FlutterProcessInfo,
    FlutterRunOptions,
    LogEntry,
    LogFollowResult,
    LogPage,
    ProcessStatus,
)
from flutter_sim_mcp.schemas.session import CreateSessionParams, SessionInfo
from flutter_sim_mcp.schemas.testing import TestLog, TestProgress, TestRunOptions, TestRunStarted

__all__ = [
    # Flutter process
    'ActionResult',
    'FlutterProcessInfo',
    'FlutterRunOptions',
    'LogEntry',
    'LogFollowResult',
    'LogPage',
    'ProcessStatus',
    # Session
    'CreateSessionParams',
    'SessionInfo',
    # Testing
    'TestLog',
    'TestProgress',
    'TestRunOptions',
    'TestRunStarted',
]
