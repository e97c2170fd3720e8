"""Two-device voice relay server with speech translation."""

__version__ = "0.1.0"
