"""Nightly crown auction settlement service."""

__version__ = "1.0.0"
