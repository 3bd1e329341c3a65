"""Isolated iOS simulator sessions for Flutter projects, served over MCP."""
