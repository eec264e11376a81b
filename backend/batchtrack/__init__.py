"""Pre-processing batch status tracking and production audit log."""

__version__ = "0.3.0"
