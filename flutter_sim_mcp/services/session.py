"""
Session registry - binds a validated project directory to a simulator.

A session owns:
- one freshly created and booted simulator
- at most one FlutterProcessManager (created on first flutter_run)
- at most one FlutterTestManager (created on first flutter_test)

Security boundary:
- Project paths are resolved (symlinks included) and must lie inside the
  configured allowed prefix, compared by path segments
- The directory must exist and contain pubspec.yaml
- Validation happens before any simulator is created

Teardown is best-effort per step: a failure to stop the process or to shut
down the simulator is logged and the remaining steps still run. The registry
entry is detached before teardown starts, so a session can never be used
while it is being ended and is never left behind.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path

import attrs
import uuid6

from flutter_sim_mcp.exceptions import (
    AccessDeniedError,
    InvalidProjectError,
    NotADirectoryProjectError,
    ProjectPathNotFoundError,
    SessionNotFoundError,
    TestReferenceNotFoundError,
)
from flutter_sim_mcp.protocols import DeviceController
from flutter_sim_mcp.schemas.flutter import FlutterProcessInfo, FlutterRunOptions
from flutter_sim_mcp.schemas.session import CreateSessionParams, SessionInfo
from flutter_sim_mcp.schemas.testing import DEFAULT_TEST_TIMEOUT_MINUTES, TestRunOptions
from flutter_sim_mcp.services.flutter_process import FlutterProcessManager
from flutter_sim_mcp.services.simulator import SimctlController
from flutter_sim_mcp.services.test_runner import FlutterTestManager

__all__ = [
    'DEFAULT_ALLOWED_PATH_PREFIX',
    'PROJECT_MANIFEST',
    'Session',
    'SessionManager',
]

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_PATH_PREFIX = '/Users/'
PROJECT_MANIFEST = 'pubspec.yaml'


@attrs.define
class Session:
    """A registered session. Mutated only through SessionManager."""

    id: str
    project_path: Path
    simulator_udid: str
    device_type: str
    created_at: datetime
    last_activity_at: datetime
    process_manager: FlutterProcessManager | None = None
    test_manager: FlutterTestManager | None = None

    def touch(self) -> None:
        self.last_activity_at = datetime.now(UTC)

    def info(self) -> SessionInfo:
        status = self.process_manager.get_status() if self.process_manager else None
        return SessionInfo(
            id=self.id,
            worktree_path=str(self.project_path),
            simulator_udid=self.simulator_udid,
            device_type=self.device_type,
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
            flutter_status=status.status if status else None,
            test_run_count=len(self.test_manager.get_all_references()) if self.test_manager else 0,
        )


class SessionManager:
    """
    Registry of active sessions.

    Construct one per server process. The allowed prefix is configuration of
    this instance, not process-global state.
    """

    def __init__(
        self,
        allowed_path_prefix: str = DEFAULT_ALLOWED_PATH_PREFIX,
        *,
        device_controller: DeviceController | None = None,
        process_manager_factory: Callable[[], FlutterProcessManager] = FlutterProcessManager,
        test_manager_factory: Callable[[], FlutterTestManager] = FlutterTestManager,
    ) -> None:
        self._allowed_path_prefix = allowed_path_prefix
        self._devices = device_controller if device_controller is not None else SimctlController()
        self._process_manager_factory = process_manager_factory
        self._test_manager_factory = test_manager_factory
        self._sessions: dict[str, Session] = {}

    @property
    def allowed_path_prefix(self) -> str:
        return self._allowed_path_prefix

    def configure(self, allowed_path_prefix: str) -> None:
        """Replace the allowed prefix. Existing sessions are not re-checked."""
        self._allowed_path_prefix = allowed_path_prefix
        logger.info(f'SessionManager configured: allowed_path_prefix={allowed_path_prefix}')

    # ==========================================================================
    # Creation
    # ==========================================================================

    def _validate_project_path(self, worktree_path: str) -> Path:
        try:
            resolved_path = Path(worktree_path).resolve()
        except ValueError as e:
            # e.g. an embedded NUL byte
            raise AccessDeniedError(repr(worktree_path), self._allowed_path_prefix) from e
        allowed_root = Path(self._allowed_path_prefix).resolve()

        # Segment comparison: a prefix of /Users/alice must not admit /Users/alice-evil
        if not resolved_path.is_relative_to(allowed_root):
            raise AccessDeniedError(str(resolved_path), self._allowed_path_prefix)

        if not resolved_path.exists():
            raise ProjectPathNotFoundError(worktree_path)

        if not resolved_path.is_dir():
            raise NotADirectoryProjectError(worktree_path)

        if not (resolved_path / PROJECT_MANIFEST).is_file():
            raise InvalidProjectError(str(resolved_path))

        return resolved_path

    async def create_session(self, params: CreateSessionParams) -> SessionInfo:
        """
        Validate the project path, create and boot a simulator, register a session.

        Args:
            params: Project path and simulator device type

        Returns:
            Public view of the new session

        Raises:
            AccessDeniedError: Path outside the allowed prefix
            ProjectPathNotFoundError: Path does not exist
            NotADirectoryProjectError: Path is not a directory
            InvalidProjectError: pubspec.yaml missing
            DeviceControlError: Simulator creation or boot failed (nothing registered)
        """
        logger.info(f'Creating session for {params.worktree_path} ({params.device_type})')

        project_path = self._validate_project_path(params.worktree_path)

        simulator_udid = await self._devices.create_instance(params.device_type)
        logger.debug(f'Simulator created: {simulator_udid}')

        try:
            await self._devices.boot(simulator_udid)
        except BaseException as original_exc:
            # Includes cancellation: the simulator must not outlive a failed creation
            logger.error(f'Simulator boot failed: {original_exc!r}, deleting {simulator_udid}')
            try:
                await self._devices.delete(simulator_udid)
            except Exception as delete_error:
                logger.warning(f'Failed to delete simulator {simulator_udid}: {delete_error}')
            raise
        logger.debug(f'Simulator booted: {simulator_udid}')

        now = datetime.now(UTC)
        session = Session(
            id=str(uuid6.uuid7()),
            project_path=project_path,
            simulator_udid=simulator_udid,
            device_type=params.device_type,
            created_at=now,
            last_activity_at=now,
        )
        self._sessions[session.id] = session

        logger.info(f'Session created: {session.id} (simulator {simulator_udid})')
        return session.info()

    # ==========================================================================
    # Lookup
    # ==========================================================================

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> Session:
        """Look up a session and record activity on it.

        Raises:
            SessionNotFoundError: Unknown or already-ended session
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.touch()
        return session

    def update_session_activity(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()

    def list_sessions(self) -> list[SessionInfo]:
        return [session.info() for session in self._sessions.values()]

    def get_all_session_ids(self) -> list[str]:
        return list(self._sessions)

    def get_process_manager(self, session_id: str) -> FlutterProcessManager | None:
        return self.require_session(session_id).process_manager

    def get_or_create_process_manager(self, session_id: str) -> FlutterProcessManager:
        session = self.require_session(session_id)
        if session.process_manager is None:
            session.process_manager = self._process_manager_factory()
        return session.process_manager

    def get_or_create_test_manager(self, session_id: str) -> FlutterTestManager:
        session = self.require_session(session_id)
        if session.test_manager is None:
            session.test_manager = self._test_manager_factory()
        return session.test_manager

    def find_test_manager(self, reference: int) -> tuple[Session, FlutterTestManager]:
        """
        Find the tracker that owns a test reference.

        References are process-wide, so every session's tracker is scanned.

        Raises:
            TestReferenceNotFoundError: No session owns the reference
        """
        for session in self._sessions.values():
            if session.test_manager and reference in session.test_manager.get_all_references():
                session.touch()
                return session, session.test_manager
        raise TestReferenceNotFoundError(reference)

    # ==========================================================================
    # Session-scoped operations
    # ==========================================================================

    async def start_flutter(
        self,
        session_id: str,
        *,
        target: str | None = None,
        flavor: str | None = None,
        additional_args: Sequence[str] | None = None,
    ) -> FlutterProcessInfo:
        """Start `flutter run` bound to the session's project and simulator."""
        session = self.require_session(session_id)
        manager = self.get_or_create_process_manager(session_id)
        return await manager.start(
            FlutterRunOptions(
                worktree_path=str(session.project_path),
                device_id=session.simulator_udid,
                target=target,
                flavor=flavor,
                additional_args=list(additional_args) if additional_args is not None else None,
            )
        )

    def start_tests(
        self,
        session_id: str,
        *,
        test_name_match: str | None = None,
        timeout_minutes: float = DEFAULT_TEST_TIMEOUT_MINUTES,
        tags: Sequence[str] | None = None,
    ) -> int:
        """Start `flutter test` in the session's project. Returns the run reference."""
        session = self.require_session(session_id)
        manager = self.get_or_create_test_manager(session_id)
        return manager.start(
            TestRunOptions(
                worktree_path=str(session.project_path),
                test_name_match=test_name_match,
                timeout_minutes=timeout_minutes,
                tags=list(tags) if tags is not None else None,
            )
        )

    # ==========================================================================
    # Teardown
    # ==========================================================================

    async def end_session(self, session_id: str) -> None:
        """
        End a session: stop flutter, cancel test runs, shut down and delete the simulator.

        Every step is attempted even if an earlier one failed; failures are
        logged, not raised.

        Raises:
            SessionNotFoundError: Unknown or already-ended session
        """
        logger.info(f'Ending session {session_id}')

        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)

        if session.process_manager is not None:
            try:
                await session.process_manager.cleanup()
                logger.debug(f'Flutter process cleaned up for session {session_id}')
            except Exception as e:
                logger.warning(f'Failed to cleanup Flutter process for session {session_id}: {e}')

        if session.test_manager is not None:
            try:
                await session.test_manager.cancel_all()
            except Exception as e:
                logger.warning(f'Failed to cancel test runs for session {session_id}: {e}')

        try:
            await self._devices.shutdown(session.simulator_udid)
            logger.debug(f'Simulator shutdown: {session.simulator_udid}')
        except Exception as e:
            logger.warning(f'Failed to shutdown simulator {session.simulator_udid}: {e}')

        try:
            await self._devices.delete(session.simulator_udid)
            logger.debug(f'Simulator deleted: {session.simulator_udid}')
        except Exception as e:
            logger.warning(f'Failed to delete simulator {session.simulator_udid}: {e}')

        logger.info(f'Session ended: {session_id}')

    async def cleanup(self) -> None:
        """End every session. One broken session never blocks the others."""
        logger.info('Cleaning up all sessions')

        for session_id in list(self._sessions):
            try:
                await self.end_session(session_id)
            except Exception as e:
                logger.error(f'Failed to end session {session_id} during cleanup: {e}')
