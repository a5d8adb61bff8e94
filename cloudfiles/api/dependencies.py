"""
FastAPI dependency injection.

Dependencies provide the storage connection, the mapping repository and
configuration to route handlers. Routes never build their own clients,
so tests can swap any of them through app.dependency_overrides.

In mock mode the in-memory cloud and repository are shared across
requests, so files stored in one request are visible in the next.
"""

import logging
from typing import Annotated, Generator, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.storage import EntityRef, FormatUploader, MappingRepository
from ..infrastructure.cloud import Connection, StorageConfig, create_connection
from ..infrastructure.snowflake.client import SnowflakeConfig, create_snowflake_connection
from ..infrastructure.snowflake.repositories import (
    InMemoryMappingRepository,
    SnowflakeMappingRepository,
)

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Global mock instances (shared across requests)
_mock_connection: Optional[Connection] = None
_mock_repository: Optional[InMemoryMappingRepository] = None


def reset_mock_instances() -> None:
    """Forget the shared mock cloud and repository (for tests)."""
    global _mock_connection, _mock_repository

    if _mock_connection is not None:
        _mock_connection.close()
    _mock_connection = None
    _mock_repository = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Raises 403 if key is invalid or missing. Callback endpoints do not use
    this: they are authenticated by their signature instead.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_connection(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[Connection, None, None]:
    """
    Provide a connection to the storage cloud.

    Real connections are opened per request and closed afterwards; the
    mock connection lives for the whole process.
    """
    global _mock_connection

    config = StorageConfig.from_settings(settings)

    if settings.storage_mock_mode:
        if _mock_connection is None:
            _mock_connection = create_connection(config, mock_mode=True)
            logger.info("Created shared in-memory storage cloud")
        yield _mock_connection
        return

    with create_connection(config) as connection:
        yield connection


def get_mapping_repository(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[MappingRepository, None, None]:
    """
    Provide the FileMapping repository.

    A generator so the Snowflake connection is closed after the request.
    """
    global _mock_repository

    if settings.snowflake_mock_mode:
        if _mock_repository is None:
            _mock_repository = InMemoryMappingRepository()
            logger.info("Created shared in-memory mapping repository")
        yield _mock_repository
        return

    with create_snowflake_connection(SnowflakeConfig.from_settings(settings)) as conn:
        yield SnowflakeMappingRepository(conn)


def get_uploader(
    settings: Annotated[Settings, Depends(get_settings)],
) -> FormatUploader:
    """Extension table for derived files, with configured overrides applied."""
    uploader = FormatUploader()
    uploader.extensions.update(settings.encoding_extensions_map)
    return uploader


def get_entity(object_name: str, object_id: str) -> EntityRef:
    """The owning record addressed by the ``{object_name}/{object_id}`` path."""
    identifier = int(object_id) if object_id.isdigit() else object_id
    return EntityRef(object_name=object_name.lower(), object_identifier=identifier)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
ConnectionDep = Annotated[Connection, Depends(get_connection)]
MappingRepositoryDep = Annotated[MappingRepository, Depends(get_mapping_repository)]
UploaderDep = Annotated[FormatUploader, Depends(get_uploader)]
EntityDep = Annotated[EntityRef, Depends(get_entity)]
