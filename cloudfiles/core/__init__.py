"""
Core logic of the storage cloud client.

This package is framework-agnostic: it doesn't import httpx, FastAPI or
Snowflake. Connections and repositories are passed in through protocols,
so the file lifecycle can be tested in isolation.
"""
