"""Settings for flutter-sim-mcp."""
