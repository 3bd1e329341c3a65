"""MCP server entry point for flutter-sim-mcp."""

from __future__ import annotations

from flutter_sim_mcp.mcp.server import ServerState, build_state, create_server, main, run_server

__all__ = ['ServerState', 'build_state', 'create_server', 'main', 'run_server']
