"""Configuration package for crown settlement."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
