"""Command-line interface for flutter-sim-mcp."""
