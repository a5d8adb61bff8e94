"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- cloud: signed HTTP access to the storage master and nodes
- snowflake: persistence of file mappings

These wrappers implement the protocols declared in core.storage.
"""
