"""
Cloudfiles - files attached to domain records, stored in a replicated
storage cloud.

This package contains the complete application:
- core: Framework-agnostic storage logic (StorageFile, derived results)
- infrastructure: Storage cloud connection and Snowflake persistence
- api: FastAPI routes for processing callbacks and file lookups
- config: Application configuration
"""

__version__ = "0.1.0"
