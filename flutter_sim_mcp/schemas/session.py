"""
Session schemas.

Input parameters for session creation and the public view of a session.
"""

from __future__ import annotations

from datetime import datetime

import pydantic

from flutter_sim_mcp.schemas.base import StrictModel
from flutter_sim_mcp.schemas.flutter import ProcessStatus
from flutter_sim_mcp.schemas.types import PathStr

DEFAULT_DEVICE_TYPE = 'iPhone 16 Pro'


class CreateSessionParams(StrictModel):
    """Parameters for SessionManager.create_session."""

    worktree_path: PathStr
    device_type: str = DEFAULT_DEVICE_TYPE

    @pydantic.field_validator('worktree_path', 'device_type')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('must not be empty')
        return v


class SessionInfo(StrictModel):
    """Public view of a registered session."""

    id: str
    worktree_path: PathStr
    simulator_udid: str
    device_type: str
    created_at: datetime
    last_activity_at: datetime
    flutter_status: ProcessStatus | None  # None until flutter_run is called
    test_run_count: int
