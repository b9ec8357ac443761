"""Version information for PakeForge."""

__version__ = "0.1.0"
