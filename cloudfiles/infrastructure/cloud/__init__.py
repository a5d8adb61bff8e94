"""
Storage cloud integration: request signing and the HTTP connection to the
master and the nodes. Includes an in-memory cloud for mock mode.
"""

from .cipher import Cipher
from .connection import Connection, StorageConfig, create_connection
from .mock import InMemoryCloud

__all__ = [
    "Cipher",
    "Connection",
    "InMemoryCloud",
    "StorageConfig",
    "create_connection",
]
