"""
File lookup endpoints.

Other services ask here for a URL to a stored file instead of talking to
the storage cloud themselves. Requires an API key.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from ...core.storage import (
    MetaInformationMissing,
    NodesMissing,
    StorageConnection,
    StorageFile,
)
from ..dependencies import (
    AuthenticatedUser,
    ConnectionDep,
    EntityDep,
    MappingRepositoryDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class FileUrlResponse(BaseModel):
    url: str
    identifier: Optional[str] = None
    access_level: str
    expires: Optional[int] = None


class FileMetaResponse(BaseModel):
    identifier: Optional[str] = None
    filename: str
    access_level: str
    content_type: str
    size: int


def _stored_file(entity, identifier, connection: StorageConnection, repository) -> StorageFile:
    file = StorageFile(
        entity=entity,
        identifier=identifier,
        connection=connection,
        repository=repository,
    )

    if file.mapping is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No file for {entity.object_name} {entity.object_identifier}",
        )

    return file


@router.get(
    "/{object_name}/{object_id}/url",
    response_model=FileUrlResponse,
    summary="URL of a stored file",
    description="Returns a URL on one of the replica nodes. With `expires` the URL is signed "
                "and stops working after that many seconds.",
)
def file_url(
    entity: EntityDep,
    api_key: AuthenticatedUser,
    connection: ConnectionDep,
    repository: MappingRepositoryDep,
    identifier: Optional[str] = Query(default=None),
    expires: Optional[int] = Query(default=None, gt=0),
) -> FileUrlResponse:
    file = _stored_file(entity, identifier, connection, repository)

    try:
        url = file.url(expires=expires)
    except NodesMissing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File has no replicas",
        )

    return FileUrlResponse(
        url=url,
        identifier=file.mapping.identifier,
        access_level=file.access_level(),
        expires=expires,
    )


@router.get(
    "/{object_name}/{object_id}/meta",
    response_model=FileMetaResponse,
    summary="Meta information of a stored file",
)
def file_meta(
    entity: EntityDep,
    api_key: AuthenticatedUser,
    connection: ConnectionDep,
    repository: MappingRepositoryDep,
    identifier: Optional[str] = Query(default=None),
) -> FileMetaResponse:
    file = _stored_file(entity, identifier, connection, repository)

    try:
        return FileMetaResponse(
            identifier=file.mapping.identifier,
            filename=file.filename,
            access_level=file.access_level(),
            content_type=file.content_type(),
            size=file.size(),
        )
    except (MetaInformationMissing, NodesMissing) as e:
        logger.error("Meta information unavailable", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Meta information unavailable",
        )
