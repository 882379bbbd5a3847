"""Building management core service."""

__version__ = "1.0.0"
