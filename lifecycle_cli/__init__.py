"""Command-line entry point for lifecycle operations (``lifecycle`` console script)."""
