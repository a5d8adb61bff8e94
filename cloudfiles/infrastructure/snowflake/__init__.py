"""Snowflake persistence for file mappings."""
