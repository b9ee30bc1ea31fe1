"""Multi-channel seller dashboard backend."""

__version__ = "1.0.0"
