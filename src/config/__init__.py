"""
Application configuration using Pydantic settings.

Configuration comes from environment variables with sensible defaults.
The storage backend (cloud or local disk) is chosen from it once at startup.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
