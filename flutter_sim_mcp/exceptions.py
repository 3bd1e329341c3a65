"""
Shared exceptions for flutter-sim-mcp.

Every error raised across the session/process boundary derives from
FlutterSimError so the MCP layer can report it to the client verbatim.

Exception Hierarchy:
    FlutterSimError (base)
    ├── AccessDeniedError (path outside the allowed prefix)
    ├── NotFoundError (lookup failures)
    │   ├── SessionNotFoundError
    │   ├── TestReferenceNotFoundError
    │   ├── ProjectPathNotFoundError
    │   └── TargetNotFoundError
    ├── NotADirectoryProjectError
    ├── InvalidProjectError (pubspec.yaml missing)
    ├── AlreadyRunningError
    ├── PathEscapeError (entry file outside the project)
    ├── InvalidEntryTypeError
    ├── InvalidFlavorError
    ├── InvalidArgumentError (bad pagination or test filters)
    │   └── UnsafeArgumentError (extra flutter argument not allowed)
    └── DeviceControlError (simctl failure)
"""

from __future__ import annotations

from collections.abc import Sequence


class FlutterSimError(Exception):
    """Base exception for all flutter-sim-mcp errors."""


class AccessDeniedError(FlutterSimError):
    """Raised when a project path resolves outside the allowed prefix."""

    def __init__(self, resolved_path: str, allowed_prefix: str) -> None:
        self.resolved_path = resolved_path
        self.allowed_prefix = allowed_prefix
        super().__init__(
            f'Access denied: Project path must be under {allowed_prefix}. Provided path: {resolved_path}'
        )


class NotFoundError(FlutterSimError):
    """Base exception for lookup failures."""


class SessionNotFoundError(NotFoundError):
    """Raised when a session ID is not registered."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'Session not found: {session_id}')


class TestReferenceNotFoundError(NotFoundError):
    """Raised when no tracker owns a test run reference."""

    __test__ = False  # not a pytest test class

    def __init__(self, reference: int) -> None:
        self.reference = reference
        super().__init__(f'Test reference not found: {reference}')


class ProjectPathNotFoundError(NotFoundError):
    """Raised when the project directory does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f'Flutter project directory does not exist: {path}. Ensure the path is correct and accessible.'
        )


class TargetNotFoundError(NotFoundError):
    """Raised when the entry file passed with -t does not exist."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f'Target file does not exist: {target}')


class NotADirectoryProjectError(FlutterSimError):
    """Raised when the project path exists but is not a directory."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f'Path is not a directory: {path}. '
            'Provide a path to a directory containing a Flutter project (with pubspec.yaml).'
        )


class InvalidProjectError(FlutterSimError):
    """Raised when the directory has no pubspec.yaml."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f'Not a valid Flutter project (missing pubspec.yaml): {path}. '
            'The directory must contain a pubspec.yaml file.'
        )


class AlreadyRunningError(FlutterSimError):
    """Raised when starting a process while one is still attached."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f'Flutter process already running (PID {pid})')


class PathEscapeError(FlutterSimError):
    """Raised when an entry file resolves outside the project directory."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f'Security: Target file must be within project directory. Target: {target}')


class InvalidEntryTypeError(FlutterSimError):
    """Raised when the entry file is not a Dart source file."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f'Target must be a Dart file (.dart extension). Provided: {target}')


class InvalidFlavorError(FlutterSimError):
    """Raised when a flavor name contains characters outside [A-Za-z0-9_-]."""

    def __init__(self, flavor: str) -> None:
        self.flavor = flavor
        super().__init__(
            f'Invalid flavor name: {flavor}. Flavor must contain only letters, numbers, hyphens, and underscores.'
        )


class InvalidArgumentError(FlutterSimError):
    """Raised for unsafe extra arguments and invalid pagination parameters."""


class UnsafeArgumentError(InvalidArgumentError):
    """Raised when an extra flutter argument is not on the allow-list."""

    def __init__(self, argument: str, allowed: Sequence[str]) -> None:
        self.argument = argument
        self.allowed = list(allowed)
        super().__init__(
            f'Invalid Flutter argument: {argument}. '
            f'Allowed arguments: {", ".join(allowed)}, --dart-define=KEY=VALUE'
        )


class DeviceControlError(FlutterSimError):
    """Raised when a simulator control command fails."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f'Simulator {operation} failed: {detail}')
