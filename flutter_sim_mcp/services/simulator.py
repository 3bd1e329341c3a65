"""
iOS simulator control through `xcrun simctl`.

Each session gets its own freshly created simulator so that parallel
sessions never share app state. Simulators are named with a common prefix
so orphans left behind by a crashed server are easy to find:

    xcrun simctl list devices | grep flutter-sim-mcp-
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from flutter_sim_mcp.exceptions import DeviceControlError
from flutter_sim_mcp.services.exec import CommandResult, run_command

__all__ = ['SIMULATOR_NAME_PREFIX', 'SimctlController']

logger = logging.getLogger(__name__)

SIMULATOR_NAME_PREFIX = 'flutter-sim-mcp-'

CREATE_TIMEOUT_SECONDS = 60.0
BOOT_TIMEOUT_SECONDS = 120.0
SHUTDOWN_TIMEOUT_SECONDS = 60.0
DELETE_TIMEOUT_SECONDS = 60.0

# simctl reports these when the device is already in the requested state
ALREADY_BOOTED_MARKER = 'current state: Booted'
ALREADY_SHUTDOWN_MARKER = 'current state: Shutdown'


class SimctlController:
    """DeviceController implementation backed by `xcrun simctl`."""

    def __init__(self, xcrun_command: str = 'xcrun') -> None:
        self.xcrun_command = xcrun_command

    async def _simctl(self, operation: str, args: Sequence[str], timeout: float) -> CommandResult:
        command = [self.xcrun_command, 'simctl', *args]
        try:
            return await run_command(command, timeout=timeout)
        except TimeoutError as e:
            raise DeviceControlError(operation, f'timed out after {timeout:.0f}s') from e
        except OSError as e:
            raise DeviceControlError(operation, str(e)) from e

    async def create_instance(self, device_type: str) -> str:
        """
        Create a simulator of the given device type.

        Args:
            device_type: simctl device type name or identifier (e.g. 'iPhone 16 Pro')

        Returns:
            UDID of the new simulator

        Raises:
            DeviceControlError: If simctl fails or prints no UDID
        """
        name = f'{SIMULATOR_NAME_PREFIX}{uuid.uuid4().hex[:8]}'
        result = await self._simctl('create', ['create', name, device_type], CREATE_TIMEOUT_SECONDS)
        if not result.ok():
            raise DeviceControlError('create', result.stderr.strip() or f'exit code {result.returncode}')

        udid = result.stdout.strip()
        if not udid:
            raise DeviceControlError('create', 'simctl printed no UDID')

        logger.info(f'Created simulator {name} ({device_type}): {udid}')
        return udid

    async def boot(self, device_id: str) -> None:
        result = await self._simctl('boot', ['boot', device_id], BOOT_TIMEOUT_SECONDS)
        if not result.ok() and ALREADY_BOOTED_MARKER not in result.stderr:
            raise DeviceControlError('boot', result.stderr.strip() or f'exit code {result.returncode}')
        logger.info(f'Booted simulator {device_id}')

    async def shutdown(self, device_id: str) -> None:
        result = await self._simctl('shutdown', ['shutdown', device_id], SHUTDOWN_TIMEOUT_SECONDS)
        if not result.ok() and ALREADY_SHUTDOWN_MARKER not in result.stderr:
            raise DeviceControlError('shutdown', result.stderr.strip() or f'exit code {result.returncode}')
        logger.info(f'Shut down simulator {device_id}')

    async def delete(self, device_id: str) -> None:
        result = await self._simctl('delete', ['delete', device_id], DELETE_TIMEOUT_SECONDS)
        if not result.ok():
            raise DeviceControlError('delete', result.stderr.strip() or f'exit code {result.returncode}')
        logger.info(f'Deleted simulator {device_id}')
