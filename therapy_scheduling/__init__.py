"""Therapy scheduling core: validation, repair, voice modification and booking."""

__version__ = "0.1.0"
