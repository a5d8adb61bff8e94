"""
Configuration for the storage client and its HTTP API.

Values come from environment variables (or .env). Mock modes replace the
storage cloud and Snowflake with in-memory versions.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
