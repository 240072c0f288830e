"""Version information for photoflow."""

__version__ = "0.1.0"
