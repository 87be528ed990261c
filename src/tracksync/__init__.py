"""Track resolution and playlist synchronization engine."""

__version__ = "0.1.0"
