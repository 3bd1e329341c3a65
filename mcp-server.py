#!/usr/bin/env -S uv run
"""
Flutter Simulator MCP Server (stdio).

Setup:
    claude mcp add --transport stdio flutter-sim -- uv run "$REPO_ROOT/mcp-server.py"

Configuration comes from the environment (see flutter_sim_mcp/config/base.py),
e.g. ALLOWED_PATH_PREFIX=/Users/me/src or LOG_LEVEL=DEBUG.
"""

from __future__ import annotations

from flutter_sim_mcp.mcp.server import main

if __name__ == '__main__':
    main()
