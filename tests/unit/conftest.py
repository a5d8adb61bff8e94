"""
Shared fixtures: a Connection wired to the in-memory storage cloud and an
in-memory mapping repository. Nothing here touches the network.
"""

import httpx
import pytest

from cloudfiles.infrastructure.cloud import Cipher, Connection, InMemoryCloud, StorageConfig
from cloudfiles.infrastructure.snowflake.repositories import InMemoryMappingRepository

ACCESS_KEY = "test-access-key"
SECRET_KEY = "test-secret-key"


@pytest.fixture
def config() -> StorageConfig:
    return StorageConfig(access_key=ACCESS_KEY, secret_key=SECRET_KEY)


@pytest.fixture
def cipher() -> Cipher:
    return Cipher(ACCESS_KEY, SECRET_KEY)


@pytest.fixture
def cloud(cipher) -> InMemoryCloud:
    return InMemoryCloud(cipher)


@pytest.fixture
def connection(config, cipher, cloud):
    conn = Connection(
        config,
        client=httpx.Client(transport=cloud.transport()),
        cipher=cipher,
    )
    yield conn
    conn.close()


@pytest.fixture
def repository() -> InMemoryMappingRepository:
    return InMemoryMappingRepository()
