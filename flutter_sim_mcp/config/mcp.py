"""
MCP server configuration.

Extends the base settings with values only the server reads.
"""

from __future__ import annotations

from typing import Literal

from flutter_sim_mcp.config.base import FlutterSimSettings, lazy_settings

Transport = Literal['stdio', 'streamable-http']


class McpServerSettings(FlutterSimSettings):
    """MCP server-specific configuration."""

    TRANSPORT: Transport = 'stdio'

    # Upper bound for a single flutter_logs_follow call
    MAX_FOLLOW_SECONDS: float = 60.0


# Module-level singleton (lazy-loaded)
settings = lazy_settings(McpServerSettings)
