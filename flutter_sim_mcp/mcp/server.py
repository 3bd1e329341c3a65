"""
Flutter Simulator MCP Server.

Gives MCP clients isolated iOS simulator sessions for Flutter projects: each
session boots its own simulator, runs `flutter run` with hot reload/restart,
and runs `flutter test` in the background.

Setup:
    claude mcp add --transport stdio flutter-sim -- uvx --from git+<repo-url> flutter-sim-mcp serve

Example:
    # Start a session for a project and run the app
    session = session_start(worktree_path='/Users/me/src/my_app')
    flutter_run(session_id=session.id, target='lib/main_dev.dart')

    # Edit code, then apply it
    flutter_hot_reload(session_id=session.id)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import signal
from datetime import UTC, datetime
from typing import Any, Literal

import attrs
from mcp.server.fastmcp import Context, FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from flutter_sim_mcp.config.mcp import McpServerSettings, Transport, settings
from flutter_sim_mcp.exceptions import InvalidArgumentError
from flutter_sim_mcp.mcp.utils import DualLogger, configure_logging
from flutter_sim_mcp.protocols import LoggerProtocol
from flutter_sim_mcp.schemas.flutter import ActionResult, FlutterProcessInfo, LogFollowResult, LogPage
from flutter_sim_mcp.schemas.session import CreateSessionParams, SessionInfo
from flutter_sim_mcp.schemas.testing import TestLog, TestProgress, TestRunStarted
from flutter_sim_mcp.services.flutter_process import FlutterProcessManager
from flutter_sim_mcp.services.log_buffer import validate_page
from flutter_sim_mcp.services.session import SessionManager
from flutter_sim_mcp.services.test_runner import FlutterTestManager

logger = logging.getLogger(__name__)

# How often flutter_logs_follow checks whether the process is still attached
FOLLOW_POLL_SECONDS = 0.5

NO_PROCESS_MESSAGE = 'No Flutter process running for this session'


# ==============================================================================
# Server State (immutable)
# ==============================================================================


@attrs.define(frozen=True)
class ServerState:
    """
    Immutable server state initialized at startup.

    Holds the session registry shared by every MCP client of this process.
    """

    settings: McpServerSettings
    sessions: SessionManager


def build_state(config: McpServerSettings) -> ServerState:
    """Construct the session registry from settings."""
    sessions = SessionManager(
        config.ALLOWED_PATH_PREFIX,
        process_manager_factory=functools.partial(
            FlutterProcessManager,
            config.MAX_LOG_LINES,
            flutter_command=config.FLUTTER_COMMAND,
            stop_timeout=config.STOP_TIMEOUT_SECONDS,
            reload_settle_seconds=config.RELOAD_SETTLE_SECONDS,
        ),
        test_manager_factory=functools.partial(FlutterTestManager, flutter_command=config.FLUTTER_COMMAND),
    )
    return ServerState(settings=config, sessions=sessions)


# ==============================================================================
# Live Output
# ==============================================================================


async def follow_output(
    manager: FlutterProcessManager,
    duration_seconds: float,
    logger: LoggerProtocol,
) -> LogFollowResult:
    """
    Forward live output lines to a logger until the duration elapses or the process exits.

    Lines are delivered in production order. The subscription is always
    removed before returning.
    """
    if not manager.is_attached:
        return LogFollowResult(lines=[], duration_seconds=0.0, process_exited=True)

    queue: asyncio.Queue[str] = asyncio.Queue()
    unsubscribe = manager.subscribe(queue.put_nowait)

    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + duration_seconds
    lines: list[str] = []
    process_exited = False

    try:
        while (remaining := deadline - loop.time()) > 0:
            try:
                line = await asyncio.wait_for(queue.get(), timeout=min(remaining, FOLLOW_POLL_SECONDS))
            except TimeoutError:
                if not manager.is_attached:
                    process_exited = True
                    break
                continue
            lines.append(line)
            await logger.info(line)
    finally:
        unsubscribe()

    return LogFollowResult(
        lines=lines,
        duration_seconds=round(loop.time() - started, 3),
        process_exited=process_exited,
    )


# ==============================================================================
# Server Setup
# ==============================================================================


def create_server(state: ServerState) -> FastMCP:
    """Create the FastMCP server with all tools bound to the given state."""
    server = FastMCP(
        state.settings.APP_NAME,
        instructions='Isolated iOS simulator sessions for Flutter development and testing.',
        host=state.settings.HOST,
        port=state.settings.PORT,
        log_level=state.settings.LOG_LEVEL,
    )
    register_tools(server, state)
    register_routes(server)
    return server


def register_routes(server: FastMCP) -> None:
    """Register plain HTTP routes, served alongside /mcp by the streamable-http transport."""

    @server.custom_route('/health', methods=['GET'])
    async def health(request: Request) -> JSONResponse:
        return JSONResponse({'status': 'ok', 'timestamp': datetime.now(UTC).isoformat()})


# ==============================================================================
# Tool Registration (Closure Pattern)
# ==============================================================================


def register_tools(server: FastMCP, state: ServerState) -> None:
    """
    Register MCP tools with closure over server state.

    Args:
        server: FastMCP instance to register on
        state: Server state containing the session registry
    """
    sessions = state.sessions

    # --------------------------------------------------------------------------
    # Sessions
    # --------------------------------------------------------------------------

    @server.tool()
    async def session_start(
        worktree_path: str,
        device_type: str | None = None,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> SessionInfo:
        """
        Start a session: create and boot a dedicated iOS simulator for a Flutter project.

        The project directory must be inside the server's allowed path prefix
        and contain pubspec.yaml. Booting a new simulator can take a minute.

        Args:
            worktree_path: Absolute path of the Flutter project (or git worktree)
            device_type: Simulator device type (default: iPhone 16 Pro)

        Returns:
            Session info including the session ID used by every other tool

        Examples:
            session = await session_start('/Users/me/src/my_app')
            session = await session_start('/Users/me/src/my_app', device_type='iPad Pro 13-inch (M4)')
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        params = CreateSessionParams(
            worktree_path=worktree_path,
            device_type=device_type or state.settings.DEFAULT_DEVICE_TYPE,
        )
        await logger.info(f'Booting {params.device_type} simulator for {worktree_path}')

        info = await sessions.create_session(params)

        await logger.info(f'Session {info.id} ready on simulator {info.simulator_udid}')
        return info

    @server.tool()
    async def session_end(
        session_id: str,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> ActionResult:
        """
        End a session: stop Flutter, cancel test runs, shut down and delete its simulator.

        Args:
            session_id: Session to end
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        await sessions.end_session(session_id)

        await logger.info(f'Session {session_id} ended')
        return ActionResult(success=True, message=f'Session {session_id} ended')

    @server.tool()
    async def session_list(ctx: Context[Any, Any, Any] | None = None) -> list[SessionInfo]:
        """List active sessions."""
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        return sessions.list_sessions()

    # --------------------------------------------------------------------------
    # flutter run
    # --------------------------------------------------------------------------

    @server.tool()
    async def flutter_run(
        session_id: str,
        target: str | None = None,
        flavor: str | None = None,
        additional_args: list[str] | None = None,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> FlutterProcessInfo:
        """
        Start `flutter run` on the session's simulator.

        Returns as soon as the process is spawned; use flutter_logs or
        flutter_logs_follow to watch the build.

        Args:
            session_id: Session to run in
            target: Entry file relative to the project, e.g. lib/main_dev.dart
            flavor: Build flavor ([A-Za-z0-9_-] only)
            additional_args: Extra flags. Allowed: --debug, --release, --profile,
                --no-sound-null-safety, --enable-software-rendering, --verbose, -v,
                and --dart-define=KEY=VALUE

        Returns:
            Process status snapshot

        Examples:
            await flutter_run(session_id, target='lib/main_dev.dart', flavor='dev')
            await flutter_run(session_id, additional_args=['--dart-define=API_URL=http://localhost:8080'])
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        info = await sessions.start_flutter(
            session_id,
            target=target,
            flavor=flavor,
            additional_args=additional_args,
        )

        await logger.info(f'flutter run started (PID {info.pid}) for session {session_id}')
        return info

    @server.tool()
    async def flutter_stop(
        session_id: str,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> ActionResult:
        """Ask `flutter run` to quit (sends 'q'). Does not wait for the exit."""
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        manager = sessions.get_process_manager(session_id)
        if manager is None or not manager.stop():
            return ActionResult(success=False, message=NO_PROCESS_MESSAGE)
        return ActionResult(success=True, message='Stop requested')

    @server.tool()
    async def flutter_hot_reload(
        session_id: str,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> ActionResult:
        """Hot reload the running app (sends 'r'). Preserves app state."""
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        manager = sessions.get_process_manager(session_id)
        if manager is None or not manager.hot_reload():
            return ActionResult(success=False, message=NO_PROCESS_MESSAGE)
        return ActionResult(success=True, message='Hot reload triggered')

    @server.tool()
    async def flutter_hot_restart(
        session_id: str,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> ActionResult:
        """Hot restart the running app (sends 'R'). Resets app state."""
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        manager = sessions.get_process_manager(session_id)
        if manager is None or not manager.hot_restart():
            return ActionResult(success=False, message=NO_PROCESS_MESSAGE)
        return ActionResult(success=True, message='Hot restart triggered')

    @server.tool()
    async def flutter_kill(
        session_id: str,
        signal_name: Literal['SIGTERM', 'SIGINT', 'SIGKILL'] = 'SIGTERM',
        ctx: Context[Any, Any, Any] | None = None,
    ) -> ActionResult:
        """
        Send a signal to `flutter run` and all of its child processes.

        Args:
            session_id: Session whose process to signal
            signal_name: SIGTERM (default), SIGINT or SIGKILL
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        manager = sessions.get_process_manager(session_id)
        if manager is None or not manager.kill(signal.Signals[signal_name]):
            return ActionResult(success=False, message=NO_PROCESS_MESSAGE)

        await logger.info(f'Sent {signal_name} to Flutter process of session {session_id}')
        return ActionResult(success=True, message=f'Sent {signal_name}')

    @server.tool()
    async def flutter_status(
        session_id: str,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> FlutterProcessInfo | None:
        """Status of the session's Flutter process, or null if flutter_run was never called."""
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        manager = sessions.get_process_manager(session_id)
        return manager.get_status() if manager else None

    @server.tool()
    async def flutter_logs(
        session_id: str,
        from_index: int | None = None,
        limit: int = 100,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> LogPage:
        """
        Read buffered output of `flutter run`.

        The buffer keeps the most recent 1000 lines. Pass the returned
        next_index as from_index on the following call to read only new lines.

        Args:
            session_id: Session to read
            from_index: First line index to return (default: oldest retained)
            limit: Maximum lines to return (default: 100)

        Examples:
            page = await flutter_logs(session_id)
            page = await flutter_logs(session_id, from_index=page.next_index)
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        manager = sessions.get_process_manager(session_id)
        if manager is None:
            validate_page(from_index, limit)
            return LogPage(logs=[], next_index=0, total_lines=0)
        return manager.get_logs(from_index, limit)

    @server.tool()
    async def flutter_logs_follow(
        session_id: str,
        duration_seconds: float = 10.0,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> LogFollowResult:
        """
        Stream live `flutter run` output to the client as log messages.

        Follows until duration_seconds elapse (capped at MAX_FOLLOW_SECONDS,
        default 60) or the process exits, then returns every line received.

        Args:
            session_id: Session to follow
            duration_seconds: How long to follow (default: 10)
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        if duration_seconds <= 0:
            raise InvalidArgumentError(f'duration_seconds must be positive, got: {duration_seconds}')

        manager = sessions.get_process_manager(session_id)
        if manager is None:
            return LogFollowResult(lines=[], duration_seconds=0.0, process_exited=True)

        duration = min(duration_seconds, state.settings.MAX_FOLLOW_SECONDS)
        return await follow_output(manager, duration, DualLogger(ctx))

    # --------------------------------------------------------------------------
    # flutter test
    # --------------------------------------------------------------------------

    @server.tool()
    async def flutter_test(
        session_id: str,
        test_name_match: str | None = None,
        timeout_minutes: float | None = None,
        tags: list[str] | None = None,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> TestRunStarted:
        """
        Run `flutter test` in the background.

        Poll flutter_test_results with the returned reference for progress.

        Args:
            session_id: Session whose project to test
            test_name_match: Regular expression selecting tests by name
            timeout_minutes: Kill the run after this long (default: 10)
            tags: Only run tests with these tags

        Examples:
            run = await flutter_test(session_id)
            run = await flutter_test(session_id, test_name_match='login', tags=['unit'])
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')
        logger = DualLogger(ctx)

        reference = sessions.start_tests(
            session_id,
            test_name_match=test_name_match,
            timeout_minutes=(
                state.settings.DEFAULT_TEST_TIMEOUT_MINUTES if timeout_minutes is None else timeout_minutes
            ),
            tags=tags,
        )

        await logger.info(f'Test run {reference} started for session {session_id}')
        return TestRunStarted(reference=reference, session_id=session_id)

    @server.tool()
    async def flutter_test_results(
        reference: int,
        include_all_names: bool = False,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> TestProgress:
        """
        Progress of a test run: counts, completion and (optionally) test names.

        Args:
            reference: Reference returned by flutter_test
            include_all_names: Include names of passing and failing tests
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        _, manager = sessions.find_test_manager(reference)
        return manager.get_progress(reference, include_all_names)

    @server.tool()
    async def flutter_test_logs(
        reference: int,
        show_all: bool = False,
        ctx: Context[Any, Any, Any] | None = None,
    ) -> list[TestLog]:
        """
        Captured output of a test run, per test. Failing tests only unless show_all is set.

        Args:
            reference: Reference returned by flutter_test
            show_all: Include passing tests and all runner output
        """
        if ctx is None:
            raise RuntimeError('Context is required - must be called via FastMCP')

        _, manager = sessions.find_test_manager(reference)
        return manager.get_logs(reference, show_all)


# ==============================================================================
# Server Entry Point
# ==============================================================================


async def run_server(state: ServerState, transport: Transport) -> None:
    """
    Run the MCP server until it exits, then end every session.

    Cleanup runs in the same event loop, including after Ctrl-C, so no
    simulator or flutter process outlives the server.
    """
    server = create_server(state)
    logger.info(f'{state.settings.APP_NAME} {state.settings.VERSION} starting ({transport})')
    try:
        match transport:
            case 'stdio':
                await server.run_stdio_async()
            case 'streamable-http':
                await server.run_streamable_http_async()
    finally:
        await state.sessions.cleanup()
        logger.info('Server stopped')


def main() -> None:
    """Run the MCP server with settings from the environment."""
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(run_server(build_state(settings), settings.TRANSPORT))


if __name__ == '__main__':
    main()
