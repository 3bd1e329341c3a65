"""Shared utilities for the MCP server."""

from __future__ import annotations

# Standard Library
import logging
import sys
from typing import Any

# Third-Party Libraries
from mcp.server.fastmcp import Context

server_logger = logging.getLogger('flutter_sim_mcp.mcp')

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: str) -> None:
    # stdout belongs to the stdio transport
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


class DualLogger:
    """Logs messages to both the server log and the MCP client context.

    The server log goes to stderr; stdout carries the stdio transport.
    """

    def __init__(self, ctx: Context[Any, Any, Any]) -> None:
        self.ctx = ctx

    async def info(self, message: str) -> None:
        server_logger.info(message)
        await self.ctx.info(message)

    async def debug(self, message: str) -> None:
        server_logger.debug(message)
        await self.ctx.debug(message)

    async def warning(self, message: str) -> None:
        server_logger.warning(message)
        await self.ctx.warning(message)

    async def error(self, message: str) -> None:
        server_logger.error(message)
        await self.ctx.error(message)
