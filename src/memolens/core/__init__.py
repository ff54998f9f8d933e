"""Core configuration for memolens."""

from .config import AppConfig

__all__ = ["AppConfig"]
