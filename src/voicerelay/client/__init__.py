"""Command-line test client for the relay server."""
