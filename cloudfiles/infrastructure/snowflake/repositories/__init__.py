"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .mappings import InMemoryMappingRepository, SnowflakeMappingRepository

__all__ = ["InMemoryMappingRepository", "SnowflakeMappingRepository"]
